"""Aggregate the stat effects granted by a selection.

Each selected talent contributes the reward tier at its selected rank
(clamped to the number of tiers). Tier effects are summed per modifier id.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from talent_planner.models.constants import SOLO_ARCHETYPE_ID
from talent_planner.models.talent import TalentModel


@dataclass(slots=True)
class EffectTotal:
    modifier_id: str
    total: float = 0
    occurrences: int = 0
    talent_ids: list[str] = field(default_factory=list)


def summarize_effects(
    selection: Mapping[str, Mapping[str, int]],
    model: TalentModel,
    include_solo: bool = True,
    tree_ids: Iterable[str] | None = None,
) -> list[EffectTotal]:
    """Return per-modifier totals for *selection*, sorted by modifier id.

    Solo-archetype trees are skipped unless *include_solo*. When *tree_ids*
    is given only those trees count. Unknown trees and talents, and talents
    without reward tiers, contribute nothing.
    """
    lookup = model.tree_lookup()
    tree_archetypes = model.tree_archetype_map()
    scope = set(tree_ids) if tree_ids is not None else None
    totals: dict[str, EffectTotal] = {}

    for tree_id, talents in selection.items():
        if scope is not None and tree_id not in scope:
            continue
        tree = lookup.get(tree_id)
        if tree is None:
            continue
        if not include_solo and tree_archetypes.get(tree_id) == SOLO_ARCHETYPE_ID:
            continue
        for talent_id, rank in talents.items():
            talent = tree.talents.get(talent_id)
            if rank <= 0 or talent is None or not talent.rewards:
                continue
            tier = talent.rewards[min(rank, len(talent.rewards)) - 1]
            for effect in tier.effects:
                entry = totals.get(effect.modifier_id)
                if entry is None:
                    entry = totals[effect.modifier_id] = EffectTotal(effect.modifier_id)
                entry.total += effect.value
                entry.occurrences += 1
                if talent_id not in entry.talent_ids:
                    entry.talent_ids.append(talent_id)

    return sorted(totals.values(), key=lambda e: (e.modifier_id.casefold(), e.modifier_id))
