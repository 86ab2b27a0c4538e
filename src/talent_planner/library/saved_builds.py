"""Named saved builds: identity matching, dedup, and persistence.

A saved build's identity is its case-insensitive trimmed title plus its
subject key ("Player", or "Creature:<archetype>"). Saving a second build
with the same identity is reported as a duplicate unless the caller asks
to overwrite, in which case the existing entry keeps its id and moves to
the front of the list.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from talent_planner.codec.build_codec import DecodedBuild
from talent_planner.engine.build_config import BuildConfig
from talent_planner.engine.selection_state import (
    TalentSelection,
    ensure_creature_archetype_build,
    is_creature_overcap,
    is_player_overcap,
    max_player_talent_points,
    normalize_modifier_ids,
    normalize_selection,
)
from talent_planner.library.store import KeyValueStore
from talent_planner.models.constants import (
    MODEL_CREATURE,
    MODEL_PLAYER,
    SAVED_BUILDS_STORAGE_KEY,
)
from talent_planner.models.talent import TalentCatalog

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Build"


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------


def normalize_title(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def subject_key(model_id: str, context_id: str) -> str:
    """Return "Player" for player builds, "Creature:<id>" for creature builds.

    A creature build without a context id has no subject (empty string).
    """
    if model_id != MODEL_CREATURE:
        return MODEL_PLAYER
    context_id = context_id.strip() if isinstance(context_id, str) else ""
    return f"Creature:{context_id}" if context_id else ""


def equal_selections(
    left: Mapping[str, Mapping[str, int]], right: Mapping[str, Mapping[str, int]]
) -> bool:
    """Order-independent equality over non-empty trees and positive ranks."""
    return normalize_selection(left) == normalize_selection(right)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SavedBuild:
    id: str
    title: str
    description: str = ""
    created_at: str = ""
    model_id: str = MODEL_PLAYER
    archetype_id: str = ""
    talents: TalentSelection = field(default_factory=dict)
    player_modifier_ids: list[str] = field(default_factory=list)
    context_id: str = MODEL_PLAYER

    @property
    def subject_key(self) -> str:
        return subject_key(self.model_id, self.context_id or self.archetype_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "createdAt": self.created_at,
            "modelId": self.model_id,
            "archetypeId": self.archetype_id,
            "talents": self.talents,
            "playerModifierIds": list(self.player_modifier_ids),
            "contextId": self.context_id,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> SavedBuild | None:
        """Rebuild from stored JSON; None for entries without a string id."""
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
            return None

        def _text(key: str, default: str = "") -> str:
            value = raw.get(key)
            return value if isinstance(value, str) else default

        model_id = MODEL_CREATURE if raw.get("modelId") == MODEL_CREATURE else MODEL_PLAYER
        default_context = _text("archetypeId") if model_id == MODEL_CREATURE else MODEL_PLAYER
        return cls(
            id=raw["id"],
            title=_text("title"),
            description=_text("description"),
            created_at=str(raw.get("createdAt") or ""),
            model_id=model_id,
            archetype_id=_text("archetypeId"),
            talents=normalize_selection(raw.get("talents")),
            player_modifier_ids=normalize_modifier_ids(raw.get("playerModifierIds")),
            context_id=_text("contextId", default_context),
        )


@dataclass(slots=True)
class SaveResult:
    """Outcome of SavedBuildIndex.save.

    saved is None when a duplicate blocked the save.
    """

    saved: SavedBuild | None
    duplicate: SavedBuild | None = None


def find_duplicate(
    saved_builds: Iterable[SavedBuild], title: str, key: str
) -> SavedBuild | None:
    """Return the first stored build with the same title and subject key."""
    normalized_title = normalize_title(title)
    if not normalized_title or not key:
        return None
    for build in saved_builds:
        if normalize_title(build.title) == normalized_title and build.subject_key == key:
            return build
    return None


# ---------------------------------------------------------------------------
# Loading a saved build back into a session
# ---------------------------------------------------------------------------


def resolve_saved_build(
    saved: SavedBuild,
    catalog: TalentCatalog,
    config: BuildConfig | None = None,
) -> tuple[DecodedBuild, bool]:
    """Map a stored build onto the current catalog.

    Returns the build to load and whether it is over its point caps. Unknown
    models fall back to Player; unknown creature archetypes fall back to the
    first archetype. Invested points are never removed.
    """
    model_id = saved.model_id if catalog.model(saved.model_id) is not None else MODEL_PLAYER
    model = catalog.model(model_id)
    if model is None:
        raise ValueError(f"Catalog has no {model_id!r} model")

    if model_id == MODEL_CREATURE:
        archetype_id = saved.context_id or saved.archetype_id
        if archetype_id not in model.archetypes:
            archetype_id = model.first_archetype_id()
        talents = ensure_creature_archetype_build(saved.talents, model, archetype_id)
        build = DecodedBuild(model_id, archetype_id, talents, [])
        return build, is_creature_overcap(talents, model, config)

    modifier_ids = normalize_modifier_ids(saved.player_modifier_ids, catalog.player_modifiers)
    talents = normalize_selection(saved.talents)
    main_cap = max_player_talent_points(modifier_ids, catalog.player_modifiers, config)
    build = DecodedBuild(model_id, saved.archetype_id, talents, modifier_ids)
    return build, is_player_overcap(talents, model, main_cap, config)


# ---------------------------------------------------------------------------
# Persistent index
# ---------------------------------------------------------------------------


class SavedBuildIndex:
    """Saved builds list backed by an injected key/value store."""

    __slots__ = ("_store", "_key", "_catalog")

    def __init__(
        self,
        store: KeyValueStore,
        key: str = SAVED_BUILDS_STORAGE_KEY,
        catalog: TalentCatalog | None = None,
    ) -> None:
        self._store = store
        self._key = key
        self._catalog = catalog

    def load(self) -> list[SavedBuild]:
        """Read stored builds, newest first. Unreadable data reads as empty."""
        raw = self._store.get(self._key)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("saved builds under %r are not valid JSON; ignoring", self._key)
            return []
        if not isinstance(parsed, list):
            return []
        builds = [SavedBuild.from_dict(entry) for entry in parsed]
        return [b for b in builds if b is not None]

    def _write(self, builds: list[SavedBuild]) -> None:
        self._store.set(self._key, json.dumps([b.to_dict() for b in builds]))

    def find_duplicate(self, title: str, model_id: str, context_id: str) -> SavedBuild | None:
        return find_duplicate(self.load(), title, subject_key(model_id, context_id))

    def save(
        self,
        title: str,
        model_id: str,
        archetype_id: str,
        talents: Mapping[str, Mapping[str, int]],
        description: str = "",
        player_modifier_ids: Iterable[str] = (),
        overwrite: bool = False,
        now: datetime | None = None,
    ) -> SaveResult:
        """Store a build at the front of the list.

        Creature builds use the archetype as their context id. When the index
        has a catalog, creature talents are scoped to that archetype with
        origins pinned. A title collision within the same subject is returned
        as a duplicate and nothing is written, unless *overwrite* is set.
        """
        title = title.strip() or DEFAULT_TITLE
        is_creature = model_id == MODEL_CREATURE
        context_id = archetype_id if is_creature else MODEL_PLAYER
        builds = self.load()
        duplicate = find_duplicate(builds, title, subject_key(model_id, context_id))
        if duplicate is not None and not overwrite:
            return SaveResult(saved=None, duplicate=duplicate)

        creature_model = (
            self._catalog.model(MODEL_CREATURE) if self._catalog is not None else None
        )
        if is_creature and creature_model is not None:
            talents = ensure_creature_archetype_build(talents, creature_model, archetype_id)
        else:
            talents = normalize_selection(talents)

        created_at = (now or datetime.now(timezone.utc)).isoformat()
        saved = SavedBuild(
            id=duplicate.id if duplicate is not None else str(uuid.uuid4()),
            title=title,
            description=description.strip(),
            created_at=created_at,
            model_id=MODEL_CREATURE if is_creature else MODEL_PLAYER,
            archetype_id=archetype_id,
            talents=talents,
            player_modifier_ids=(
                [] if is_creature else normalize_modifier_ids(list(player_modifier_ids))
            ),
            context_id=context_id,
        )
        remaining = [b for b in builds if duplicate is None or b.id != duplicate.id]
        self._write([saved, *remaining])
        return SaveResult(saved=saved, duplicate=duplicate)

    def delete(self, build_id: str) -> bool:
        builds = self.load()
        remaining = [b for b in builds if b.id != build_id]
        if len(remaining) == len(builds):
            return False
        self._write(remaining)
        return True
