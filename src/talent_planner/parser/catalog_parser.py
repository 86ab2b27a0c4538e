"""Parse the transformed talent catalog JSON into model objects.

The catalog file is produced offline from the game's export tables. Shape::

    {
      "schemaVersion": 4,
      "playerTalentModifiers": [{"id": ..., "talentPointModifier": 4}, ...],
      "ranks": {"Novice": {"id": ..., "investment": 0, "nextRank": ...}, ...},
      "models": {
        "Player": {"id": "Player", "archetypes": {
          "<archetype>": {"id": ..., "modelId": ..., "trees": {
            "<tree>": {"id": ..., "archetypeId": ..., "talents": {
              "<talent>": {...}
            }}
          }}
        }}
      }
    }

Only the Player and Creature models are kept.
"""

from __future__ import annotations

import json
import math
import re
from pathlib import Path
from typing import Any

from talent_planner.models.constants import ENABLED_MODELS
from talent_planner.models.talent import (
    Archetype,
    PointModifier,
    RankInfo,
    RewardTier,
    Talent,
    TalentCatalog,
    TalentEffect,
    TalentModel,
    Tree,
)

_MODIFIER_VALUE_RE = re.compile(r'Value="([^"]+)"')


def _require_mapping(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{where} must be an object, got {type(value).__name__}")
    return value


def _optional_mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    return _require_mapping(value, where)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def extract_modifier_id(raw_key: Any) -> str:
    """Return the modifier named by a rawKey's Value="..." part, else the rawKey."""
    if not isinstance(raw_key, str) or not raw_key:
        return ""
    match = _MODIFIER_VALUE_RE.search(raw_key)
    return match.group(1) if match else raw_key


def _parse_rewards(raw: Any) -> list[RewardTier] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ValueError(f"rewards must be a list, got {type(raw).__name__}")
    tiers: list[RewardTier] = []
    for reward in raw:
        reward = reward if isinstance(reward, dict) else {}
        effects: list[TalentEffect] = []
        for effect in reward.get("effects") or []:
            if not isinstance(effect, dict):
                continue
            modifier_id = extract_modifier_id(effect.get("rawKey"))
            if modifier_id:
                effects.append(TalentEffect(modifier_id, _number(effect.get("value")) or 0))
        flags = [f for f in reward.get("flags") or [] if isinstance(f, str)]
        tiers.append(RewardTier(effects=effects, flags=flags))
    return tiers


def _parse_size(raw: Any) -> tuple[float, float] | None:
    if not isinstance(raw, dict):
        return None
    return (_number(raw.get("x")) or 0, _number(raw.get("y")) or 0)


def parse_talent(talent_id: str, tree_id: str, raw: Any) -> Talent:
    data = _require_mapping(raw, f"talent {talent_id!r}")
    rank_count = _number(data.get("rankCount"))
    required = data.get("requiredTalents") or []
    if not isinstance(required, list):
        raise ValueError(f"talent {talent_id!r}: requiredTalents must be a list")
    return Talent(
        id=str(data.get("id") or talent_id),
        tree_id=str(data.get("treeId") or tree_id),
        rewards=_parse_rewards(data.get("rewards")),
        rank_count=int(rank_count) if rank_count is not None else None,
        required_rank=data.get("requiredRank") or None,
        required_talents=[r for r in required if isinstance(r, str) and r],
        talent_type=data.get("type") or data.get("talentType") or None,
        size=_parse_size(data.get("size")),
        default_unlocked=bool(data.get("defaultUnlocked", False)),
        display=data.get("display") if isinstance(data.get("display"), str) else talent_id,
    )


def parse_tree(tree_id: str, archetype_id: str, raw: Any) -> Tree:
    data = _require_mapping(raw, f"tree {tree_id!r}")
    tree_id = str(data.get("id") or tree_id)
    talents = _optional_mapping(data.get("talents"), f"tree {tree_id!r} talents")
    return Tree(
        id=tree_id,
        archetype_id=str(data.get("archetypeId") or archetype_id),
        talents={
            tid: parse_talent(tid, tree_id, traw) for tid, traw in talents.items()
        },
        display=data.get("display") if isinstance(data.get("display"), str) else tree_id,
    )


def parse_archetype(archetype_id: str, model_id: str, raw: Any) -> Archetype:
    data = _require_mapping(raw, f"archetype {archetype_id!r}")
    archetype_id = str(data.get("id") or archetype_id)
    trees = _optional_mapping(data.get("trees"), f"archetype {archetype_id!r} trees")
    return Archetype(
        id=archetype_id,
        model_id=str(data.get("modelId") or model_id),
        trees={
            tid: parse_tree(tid, archetype_id, traw) for tid, traw in trees.items()
        },
        display=(
            data.get("display") if isinstance(data.get("display"), str) else archetype_id
        ),
    )


def _parse_modifiers(raw: Any) -> list[PointModifier]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("playerTalentModifiers must be a list")
    modifiers: list[PointModifier] = []
    for row in raw:
        if not isinstance(row, dict) or not row.get("id"):
            continue
        points = _number(row.get("talentPointModifier"))
        modifiers.append(PointModifier(id=str(row["id"]), talent_point_modifier=points or 0))
    return modifiers


def _parse_ranks(raw: Any) -> dict[str, RankInfo]:
    ranks: dict[str, RankInfo] = {}
    for rank_id, row in _optional_mapping(raw, "ranks").items():
        investment = _number(row.get("investment")) if isinstance(row, dict) else None
        if investment is None:
            continue
        ranks[rank_id] = RankInfo(
            id=rank_id,
            investment=int(investment),
            next_rank=row.get("nextRank") or None,
        )
    return ranks


def parse_catalog(data: Any) -> TalentCatalog:
    """Build a TalentCatalog from decoded catalog JSON."""
    root = _require_mapping(data, "catalog")
    schema_version = _number(root.get("schemaVersion"))
    models: dict[str, TalentModel] = {}
    for model_id, raw_model in _optional_mapping(root.get("models"), "models").items():
        if model_id not in ENABLED_MODELS:
            continue
        model_data = _require_mapping(raw_model, f"model {model_id!r}")
        archetypes = _optional_mapping(
            model_data.get("archetypes"), f"model {model_id!r} archetypes"
        )
        models[model_id] = TalentModel(
            id=model_id,
            archetypes={
                aid: parse_archetype(aid, model_id, araw)
                for aid, araw in archetypes.items()
            },
        )
    return TalentCatalog(
        schema_version=int(schema_version) if schema_version is not None else None,
        models=models,
        player_modifiers=_parse_modifiers(root.get("playerTalentModifiers")),
        ranks=_parse_ranks(root.get("ranks")),
    )


def load_catalog(path: Path) -> TalentCatalog:
    """Read and parse a catalog JSON file."""
    return parse_catalog(json.loads(path.read_text(encoding="utf-8")))
