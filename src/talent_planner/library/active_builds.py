"""Per-model "active build" snapshots used to resume editing.

One player draft plus one draft per creature archetype, and the context
that was open last. Stored as JSON under a single store key::

    {"lastContext": {"modelId": "Player", "archetypeId": ""},
     "player": {"archetypeId": "", "skilledTalents": {...},
                "modifierIds": [...], "metadata": {...} | null},
     "creatures": {"<archetype>": {"archetypeId": ..., "skilledTalents": {...},
                                   "metadata": ...}}}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from talent_planner.codec.build_codec import ShareMetadata, normalize_share_metadata
from talent_planner.engine.selection_state import (
    TalentSelection,
    ensure_creature_archetype_build,
    normalize_modifier_ids,
    normalize_selection,
)
from talent_planner.library.store import KeyValueStore
from talent_planner.models.constants import (
    ACTIVE_BUILDS_STORAGE_KEY,
    MODEL_CREATURE,
    MODEL_PLAYER,
)
from talent_planner.models.talent import TalentCatalog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildContext:
    model_id: str = MODEL_PLAYER
    archetype_id: str = ""


@dataclass(slots=True)
class ActiveBuild:
    archetype_id: str = ""
    talents: TalentSelection = field(default_factory=dict)
    modifier_ids: list[str] = field(default_factory=list)
    metadata: ShareMetadata | None = None


@dataclass(slots=True)
class ActiveBuilds:
    last_context: BuildContext = field(default_factory=BuildContext)
    player: ActiveBuild = field(default_factory=ActiveBuild)
    creatures: dict[str, ActiveBuild] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastContext": {
                "modelId": self.last_context.model_id,
                "archetypeId": self.last_context.archetype_id,
            },
            "player": {
                "archetypeId": self.player.archetype_id,
                "skilledTalents": self.player.talents,
                "modifierIds": list(self.player.modifier_ids),
                "metadata": _metadata_dict(self.player.metadata),
            },
            "creatures": {
                archetype_id: {
                    "archetypeId": archetype_id,
                    "skilledTalents": build.talents,
                    "metadata": _metadata_dict(build.metadata),
                }
                for archetype_id, build in self.creatures.items()
            },
        }

    @classmethod
    def from_dict(cls, raw: Any) -> ActiveBuilds:
        """Rebuild from stored JSON; malformed parts fall back to defaults."""
        if not isinstance(raw, dict):
            return cls()

        context = raw.get("lastContext")
        last_context = BuildContext()
        if isinstance(context, dict):
            archetype_id = context.get("archetypeId")
            last_context = BuildContext(
                model_id=MODEL_CREATURE if context.get("modelId") == MODEL_CREATURE else MODEL_PLAYER,
                archetype_id=archetype_id if isinstance(archetype_id, str) else "",
            )

        player = ActiveBuild()
        raw_player = raw.get("player")
        if isinstance(raw_player, dict):
            archetype_id = raw_player.get("archetypeId")
            player = ActiveBuild(
                archetype_id=archetype_id if isinstance(archetype_id, str) else "",
                talents=normalize_selection(raw_player.get("skilledTalents")),
                modifier_ids=normalize_modifier_ids(raw_player.get("modifierIds")),
                metadata=_metadata_from(raw_player.get("metadata")),
            )

        creatures: dict[str, ActiveBuild] = {}
        raw_creatures = raw.get("creatures")
        if isinstance(raw_creatures, dict):
            for archetype_id, build in raw_creatures.items():
                if not archetype_id or not isinstance(build, dict):
                    continue
                creatures[archetype_id] = ActiveBuild(
                    archetype_id=archetype_id,
                    talents=normalize_selection(build.get("skilledTalents")),
                    metadata=_metadata_from(build.get("metadata")),
                )

        return cls(last_context=last_context, player=player, creatures=creatures)


def _metadata_dict(metadata: ShareMetadata | None) -> dict[str, str] | None:
    if metadata is None:
        return None
    return {"title": metadata.title, "description": metadata.description}


def _metadata_from(raw: Any) -> ShareMetadata | None:
    if not isinstance(raw, dict):
        return None
    return normalize_share_metadata(raw.get("title"), raw.get("description"))


def read_active_builds(
    store: KeyValueStore, key: str = ACTIVE_BUILDS_STORAGE_KEY
) -> ActiveBuilds:
    raw = store.get(key)
    if not raw:
        return ActiveBuilds()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("active builds under %r are not valid JSON; starting fresh", key)
        return ActiveBuilds()
    return ActiveBuilds.from_dict(parsed)


def write_active_builds(
    store: KeyValueStore,
    active: ActiveBuilds,
    key: str = ACTIVE_BUILDS_STORAGE_KEY,
) -> None:
    store.set(key, json.dumps(active.to_dict()))


def next_active_builds(
    previous: ActiveBuilds | None,
    catalog: TalentCatalog,
    model_id: str,
    archetype_id: str,
    talents: Mapping[str, Mapping[str, int]],
    modifier_ids: Iterable[str] = (),
    metadata: ShareMetadata | None = None,
) -> ActiveBuilds:
    """Return a new snapshot with the current draft recorded.

    The previous snapshot is not modified. Creature drafts are scoped to
    their archetype with origin talents pinned.
    """
    previous = previous or ActiveBuilds()
    is_creature = model_id == MODEL_CREATURE
    creatures = dict(previous.creatures)
    player = replace(previous.player)

    if is_creature:
        model = catalog.model(MODEL_CREATURE)
        if archetype_id and model is not None:
            creatures[archetype_id] = ActiveBuild(
                archetype_id=archetype_id,
                talents=ensure_creature_archetype_build(talents, model, archetype_id),
                metadata=metadata,
            )
    else:
        player = ActiveBuild(
            archetype_id=archetype_id or "",
            talents=normalize_selection(talents),
            modifier_ids=normalize_modifier_ids(list(modifier_ids)),
            metadata=metadata,
        )

    return ActiveBuilds(
        last_context=BuildContext(
            model_id=MODEL_CREATURE if is_creature else MODEL_PLAYER,
            archetype_id=archetype_id or "",
        ),
        player=player,
        creatures=creatures,
    )


def active_metadata(
    active: ActiveBuilds, model_id: str, archetype_id: str
) -> ShareMetadata | None:
    if model_id == MODEL_CREATURE:
        build = active.creatures.get(archetype_id)
        return build.metadata if build is not None else None
    return active.player.metadata
