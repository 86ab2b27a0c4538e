"""Share-token codec for talent builds.

A token is URL-safe, unpadded base64 over the UTF-8 bytes of a compact JSON
record::

    {"cv": 1, "sv": 4, "m": "Player", "a": "", "t": {tree: {talent: rank}},
     "pm": ["modifier", ...], "n": "title", "d": "description"}

``pm`` is written for Player builds only; ``n``/``d`` only when there is
metadata. Decoding never raises: hard failures come back as an error code
with no build, everything else loads with advisory warnings.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs

from talent_planner.codec.base64url import decode_base64url, encode_base64url
from talent_planner.engine.build_config import BuildConfig
from talent_planner.engine.selection_state import (
    TalentSelection,
    build_graphs,
    count_unmet_talents,
    ensure_creature_archetype_build,
    is_creature_overcap,
    is_player_overcap,
    max_player_talent_points,
    normalize_modifier_ids,
    normalize_selection,
)
from talent_planner.models.constants import (
    CODEC_VERSION,
    DESCRIPTION_MAX_LENGTH,
    ENABLED_MODELS,
    MODEL_CREATURE,
    MODEL_PLAYER,
    SHARE_BUILD_QUERY_KEY,
    TITLE_MAX_LENGTH,
)
from talent_planner.models.talent import TalentCatalog, TalentModel

logger = logging.getLogger(__name__)

# Error codes
ERROR_NONE = ""
ERROR_INCOMPLETE = "incomplete"
ERROR_CORRUPTED = "corrupted"
ERROR_INVALID_MODEL = "invalidModel"

# Warning codes
WARNING_SUBSTITUTED_ARCHETYPE = "substitutedArchetype"
WARNING_OUTDATED_FORMAT = "outdatedFormat"
WARNING_SCHEMA_MISMATCH = "schemaMismatch"
WARNING_MISSING_PREREQUISITES = "missingPrerequisites"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ShareMetadata:
    title: str = ""
    description: str = ""


@dataclass(slots=True)
class BuildWarning:
    """An advisory problem found while decoding; the build still loads."""

    code: str
    message: str
    count: int | None = None


@dataclass(slots=True)
class DecodedBuild:
    model_id: str
    archetype_id: str
    talents: TalentSelection
    player_modifier_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DecodeResult:
    has_param: bool
    error_code: str = ERROR_NONE
    warnings: list[BuildWarning] = field(default_factory=list)
    metadata: ShareMetadata | None = None
    build: DecodedBuild | None = None
    overcap: bool = False

    @property
    def ok(self) -> bool:
        return self.has_param and not self.error_code and self.build is not None

    @property
    def warning_messages(self) -> list[str]:
        return [w.message for w in self.warnings]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_share_metadata(title: Any = None, description: Any = None) -> ShareMetadata | None:
    """Trim and length-cap title/description; None when both end up empty."""
    title = title.strip()[:TITLE_MAX_LENGTH] if isinstance(title, str) else ""
    description = (
        description.strip()[:DESCRIPTION_MAX_LENGTH] if isinstance(description, str) else ""
    )
    if not title and not description:
        return None
    return ShareMetadata(title=title, description=description)


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def _canonical_order(selection: TalentSelection, model: TalentModel) -> TalentSelection:
    """Reorder trees and talents to catalog order; unknown ids keep their place at the end."""
    lookup = model.tree_lookup()
    ordered_trees = [tid for tid in lookup if tid in selection]
    ordered_trees += [tid for tid in selection if tid not in lookup]
    result: TalentSelection = {}
    for tree_id in ordered_trees:
        ranks = selection[tree_id]
        tree = lookup.get(tree_id)
        known = [tid for tid in tree.talents if tid in ranks] if tree else []
        known += [tid for tid in ranks if tid not in known]
        result[tree_id] = {tid: ranks[tid] for tid in known}
    return result


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def create_share_payload(
    selection: Mapping[str, Mapping[str, int]],
    model_id: str,
    archetype_id: str = "",
    modifier_ids: Iterable[str] | None = None,
    metadata: ShareMetadata | None = None,
    catalog: TalentCatalog | None = None,
    schema_version: int | None = None,
) -> dict[str, Any]:
    """Build the canonical payload dict for a selection.

    With a catalog, creature builds are scoped to their archetype with
    origins pinned, and trees/talents are written in catalog order so equal
    selections encode to equal tokens.
    """
    model_id = MODEL_CREATURE if model_id == MODEL_CREATURE else MODEL_PLAYER
    model = catalog.model(model_id) if catalog is not None else None

    if model_id == MODEL_CREATURE and model is not None:
        if archetype_id not in model.archetypes:
            archetype_id = model.first_archetype_id()
        talents = ensure_creature_archetype_build(selection, model, archetype_id)
    else:
        archetype_id = archetype_id or ""
        talents = normalize_selection(selection)
    if model is not None:
        talents = _canonical_order(talents, model)

    if schema_version is None and catalog is not None:
        schema_version = catalog.schema_version

    payload: dict[str, Any] = {
        "cv": CODEC_VERSION,
        "sv": int(schema_version) if schema_version is not None else None,
        "m": model_id,
        "a": archetype_id,
        "t": talents,
    }
    if model_id == MODEL_PLAYER:
        available = catalog.player_modifiers if catalog is not None else None
        payload["pm"] = normalize_modifier_ids(list(modifier_ids or []), available)

    if metadata is not None:
        normalized = normalize_share_metadata(metadata.title, metadata.description)
        if normalized is not None:
            payload["n"] = normalized.title
            payload["d"] = normalized.description
    return payload


def encode_payload(payload: Mapping[str, Any]) -> str:
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return encode_base64url(text)


def encode_build(
    selection: Mapping[str, Mapping[str, int]],
    model_id: str,
    archetype_id: str = "",
    modifier_ids: Iterable[str] | None = None,
    metadata: ShareMetadata | None = None,
    catalog: TalentCatalog | None = None,
    schema_version: int | None = None,
) -> str:
    """Encode a selection and its context as a share token."""
    payload = create_share_payload(
        selection,
        model_id,
        archetype_id,
        modifier_ids=modifier_ids,
        metadata=metadata,
        catalog=catalog,
        schema_version=schema_version,
    )
    return encode_payload(payload)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _fail(error_code: str) -> DecodeResult:
    logger.debug("share token rejected: %s", error_code)
    return DecodeResult(has_param=True, error_code=error_code)


def decode_build(
    token: str | None,
    catalog: TalentCatalog,
    current_schema_version: int | None = None,
    config: BuildConfig | None = None,
) -> DecodeResult:
    """Decode a share token against the current catalog.

    Hard failures (in order): no token → has_param False; empty token →
    incomplete; undecodable base64/UTF-8/JSON → corrupted; non-object
    record → incomplete; unknown model → invalidModel; missing or
    malformed talents → incomplete. Anything past that loads, with
    warnings for a substituted creature archetype, a codec or schema
    version mismatch, and the number of talents whose gates are unmet.
    Talents with unmet gates are kept for the user to review.
    """
    if token is None:
        return DecodeResult(has_param=False)
    if not token:
        return _fail(ERROR_INCOMPLETE)

    try:
        text = decode_base64url(token)
    except ValueError:
        return _fail(ERROR_CORRUPTED)
    if not text:
        return _fail(ERROR_INCOMPLETE)
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError):
        return _fail(ERROR_CORRUPTED)
    if not isinstance(parsed, dict):
        return _fail(ERROR_INCOMPLETE)

    model_id = parsed.get("m")
    model = catalog.model(model_id) if model_id in ENABLED_MODELS else None
    if model is None:
        return _fail(ERROR_INVALID_MODEL)

    raw_talents = parsed.get("t")
    if not isinstance(raw_talents, dict):
        return _fail(ERROR_INCOMPLETE)

    if current_schema_version is None:
        current_schema_version = catalog.schema_version

    warnings: list[BuildWarning] = []
    archetype_id = parsed.get("a") if isinstance(parsed.get("a"), str) else ""
    if model_id == MODEL_CREATURE and archetype_id not in model.archetypes:
        warnings.append(BuildWarning(
            WARNING_SUBSTITUTED_ARCHETYPE,
            "This shared build references a creature archetype that no longer "
            "exists. A fallback archetype is shown.",
        ))
        archetype_id = model.first_archetype_id()

    graphs = build_graphs(model, catalog.ranks)
    if model_id == MODEL_CREATURE:
        talents = ensure_creature_archetype_build(raw_talents, model, archetype_id, graphs)
        modifier_ids: list[str] = []
    else:
        talents = normalize_selection(raw_talents)
        modifier_ids = normalize_modifier_ids(parsed.get("pm"), catalog.player_modifiers)

    if _finite_number(parsed.get("cv")) != CODEC_VERSION:
        warnings.append(BuildWarning(
            WARNING_OUTDATED_FORMAT,
            "This shared build uses an outdated share format version.",
        ))

    payload_schema = _finite_number(parsed.get("sv"))
    if (
        payload_schema is not None
        and current_schema_version is not None
        and payload_schema != current_schema_version
    ):
        warnings.append(BuildWarning(
            WARNING_SCHEMA_MISMATCH,
            "This shared build was created for a different talent data version.",
        ))

    missing = count_unmet_talents(talents, model, graphs)
    if missing > 0:
        verb = "talent is" if missing == 1 else "talents are"
        warnings.append(BuildWarning(
            WARNING_MISSING_PREREQUISITES,
            f"{missing} selected {verb} missing prerequisites in the current data.",
            count=missing,
        ))

    if model_id == MODEL_CREATURE:
        overcap = is_creature_overcap(talents, model, config)
    else:
        main_cap = max_player_talent_points(modifier_ids, catalog.player_modifiers, config)
        overcap = is_player_overcap(talents, model, main_cap, config)

    return DecodeResult(
        has_param=True,
        error_code=ERROR_NONE,
        warnings=warnings,
        metadata=normalize_share_metadata(parsed.get("n"), parsed.get("d")),
        build=DecodedBuild(
            model_id=model_id,
            archetype_id=archetype_id,
            talents=talents,
            player_modifier_ids=modifier_ids,
        ),
        overcap=overcap,
    )


def decode_build_from_query(
    query: str,
    catalog: TalentCatalog,
    current_schema_version: int | None = None,
    config: BuildConfig | None = None,
) -> DecodeResult:
    """Decode the ``build`` parameter of a URL query string."""
    values = parse_qs(query.lstrip("?"), keep_blank_values=True).get(SHARE_BUILD_QUERY_KEY)
    token = values[0] if values else None
    return decode_build(token, catalog, current_schema_version, config)
