"""Selection state: point caps, rank edits and cascade invalidation.

A TalentSelection maps tree id → talent id → rank. It is sparse: ranks are
positive integers and trees with no ranks are absent. Selections are never
edited in place; every accepted change produces a new snapshot, and a
rejected change hands back the previous snapshot object unchanged.

Player trees draw from two pools (main, and solo for the "Solo" archetype).
Creature trees each have their own absolute cap and a pinned origin talent
that never drops below rank 1.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from talent_planner.engine.build_config import BuildConfig
from talent_planner.engine.effect_summary import EffectTotal, summarize_effects
from talent_planner.graph.talent_graph import TalentGraph
from talent_planner.models.constants import (
    CATEGORY_COMBAT_PET,
    CATEGORY_MOUNT,
    CATEGORY_REGULAR_PET,
    COMBAT_PET_TALENT_PREFIX,
    MODEL_CREATURE,
    REGULAR_PET_TALENT_PREFIX,
    REGULAR_PET_TREE_OVERRIDES,
    SOLO_ARCHETYPE_ID,
)
from talent_planner.models.talent import (
    PointModifier,
    RankInfo,
    TalentCatalog,
    TalentModel,
    Tree,
)

logger = logging.getLogger(__name__)

TalentSelection = dict[str, dict[str, int]]


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class PointSummary:
    main_points: int = 0
    solo_points: int = 0


@dataclass(slots=True)
class RankChange:
    """Outcome of a rank edit.

    On rejection *selection* is the previous snapshot (same object) and
    *reason* says why; callers decide whether to surface it.
    """

    selection: TalentSelection
    applied: bool
    reason: str = ""


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def _coerce_rank(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        try:
            raw = float(raw.strip())
        except ValueError:
            return None
    if not isinstance(raw, (int, float)):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    rank = math.floor(raw)
    return rank if rank >= 0 else None


def normalize_selection(raw: Any) -> TalentSelection:
    """Canonicalize an untrusted tree → talent → rank mapping.

    Drops non-mapping containers, empty ids, unusable or negative ranks,
    zero ranks, and trees left empty. Fractional ranks are floored.
    """
    if not isinstance(raw, Mapping):
        return {}
    selection: TalentSelection = {}
    for tree_id, tree_talents in raw.items():
        if not isinstance(tree_id, str) or not tree_id:
            continue
        if not isinstance(tree_talents, Mapping):
            continue
        ranks: dict[str, int] = {}
        for talent_id, raw_rank in tree_talents.items():
            if not isinstance(talent_id, str) or not talent_id:
                continue
            rank = _coerce_rank(raw_rank)
            if rank:
                ranks[talent_id] = rank
        if ranks:
            selection[tree_id] = ranks
    return selection


def normalize_modifier_ids(
    raw: Any, available: Iterable[PointModifier] | None = None
) -> list[str]:
    """Ordered, unique modifier ids; filtered to *available* when it is non-empty."""
    if not isinstance(raw, (list, tuple)):
        return []
    allowed = {m.id for m in available or [] if m.id}
    normalized: list[str] = []
    for modifier_id in raw:
        if not isinstance(modifier_id, str) or not modifier_id:
            continue
        if allowed and modifier_id not in allowed:
            continue
        if modifier_id not in normalized:
            normalized.append(modifier_id)
    return normalized


# ---------------------------------------------------------------------------
# Point accounting
# ---------------------------------------------------------------------------


def tree_points(selection: Mapping[str, Mapping[str, int]], tree_id: str) -> int:
    return sum(selection.get(tree_id, {}).values())


def summarize_points(
    selection: Mapping[str, Mapping[str, int]], tree_archetypes: Mapping[str, str]
) -> PointSummary:
    """Partition spent points into the main and solo pools."""
    summary = PointSummary()
    for tree_id, talents in selection.items():
        points = sum(talents.values())
        if tree_archetypes.get(tree_id) == SOLO_ARCHETYPE_ID:
            summary.solo_points += points
        else:
            summary.main_points += points
    return summary


def player_talent_point_bonus(
    modifier_ids: Iterable[str], available: list[PointModifier]
) -> float:
    by_id = {m.id: m for m in available}
    ids = normalize_modifier_ids(list(modifier_ids), available)
    return sum(by_id[mid].talent_point_modifier for mid in ids if mid in by_id)


def max_player_talent_points(
    modifier_ids: Iterable[str],
    available: list[PointModifier],
    config: BuildConfig | None = None,
) -> float:
    config = config or BuildConfig()
    return config.max_talent_points + player_talent_point_bonus(modifier_ids, available)


def creature_tree_category(tree: Tree) -> str:
    """Classify a creature tree as mount, combat pet, or livestock."""
    if tree.id in REGULAR_PET_TREE_OVERRIDES:
        return CATEGORY_REGULAR_PET
    talent_ids = list(tree.talents)
    if any(tid.startswith(REGULAR_PET_TALENT_PREFIX) for tid in talent_ids):
        return CATEGORY_REGULAR_PET
    if any(tid.startswith(COMBAT_PET_TALENT_PREFIX) for tid in talent_ids):
        return CATEGORY_COMBAT_PET
    return CATEGORY_MOUNT


def creature_tree_caps(
    model: TalentModel, config: BuildConfig | None = None
) -> dict[str, int]:
    """Return tree id → absolute point cap for every creature tree."""
    config = config or BuildConfig()
    caps: dict[str, int] = {}
    if model.id != MODEL_CREATURE:
        return caps
    for tree_id, tree in model.tree_lookup().items():
        category = creature_tree_category(tree)
        caps[tree_id] = (
            config.mount_level_cap if category == CATEGORY_MOUNT else config.pet_level_cap
        )
    return caps


def is_player_overcap(
    selection: Mapping[str, Mapping[str, int]],
    model: TalentModel,
    main_cap: float,
    config: BuildConfig | None = None,
) -> bool:
    config = config or BuildConfig()
    summary = summarize_points(selection, model.tree_archetype_map())
    return summary.main_points > main_cap or summary.solo_points > config.max_solo_points


def is_creature_overcap(
    selection: Mapping[str, Mapping[str, int]],
    model: TalentModel,
    config: BuildConfig | None = None,
) -> bool:
    caps = creature_tree_caps(model, config)
    return any(
        sum(talents.values()) > caps[tree_id]
        for tree_id, talents in selection.items()
        if tree_id in caps
    )


def minimum_character_level(
    summary: PointSummary,
    bonus_points: float = 0,
    config: BuildConfig | None = None,
) -> int:
    """Lowest character level that has earned enough points for *summary*.

    Odd levels award 1 talent point, even levels 2 talent points and 1 solo
    point. Modifier bonus points are not earned by levelling.
    """
    config = config or BuildConfig()
    needed_main = max(0, summary.main_points - bonus_points)
    earned_main = 0
    earned_solo = 0
    for level in range(1, config.max_character_level + 1):
        earned_main += 1 if level % 2 == 1 else 2
        if level % 2 == 0:
            earned_solo += 1
        if earned_main >= needed_main and earned_solo >= summary.solo_points:
            return level
    return config.max_character_level


# ---------------------------------------------------------------------------
# Graph-driven fixups
# ---------------------------------------------------------------------------


def build_graphs(
    model: TalentModel, ranks: Mapping[str, RankInfo] | None = None
) -> dict[str, TalentGraph]:
    return {
        tree_id: TalentGraph.build(tree, ranks) for tree_id, tree in model.tree_lookup().items()
    }


def cascade_invalidate(
    tree_selection: Mapping[str, int],
    graph: TalentGraph,
    origin_id: str | None = None,
) -> dict[str, int]:
    """Drop talents whose gates no longer hold, until a pass changes nothing.

    Each pass measures tree points once, then removes every ranked talent
    (other than *origin_id*) that is hidden, below its rank gate, or has no
    satisfied prerequisite. Removals only lower points, so the loop ends.
    Talents unknown to the tree are left alone.
    """
    current = {tid: rank for tid, rank in tree_selection.items() if rank > 0}
    changed = True
    while changed:
        changed = False
        points = sum(current.values())
        for talent_id in list(current):
            if talent_id == origin_id or graph.get_talent(talent_id) is None:
                continue
            if (
                graph.is_hidden(talent_id)
                or not graph.meets_rank_gate(talent_id, points)
                or not graph.meets_prerequisites(talent_id, current)
            ):
                del current[talent_id]
                changed = True
    return current


def count_unmet_talents(
    selection: Mapping[str, Mapping[str, int]],
    model: TalentModel,
    graphs: Mapping[str, TalentGraph] | None = None,
) -> int:
    """Count selected visible talents whose rank or prerequisite gate fails."""
    graphs = graphs if graphs is not None else build_graphs(model)
    count = 0
    for tree_id, talents in selection.items():
        graph = graphs.get(tree_id)
        if graph is None:
            continue
        points = sum(talents.values())
        for talent_id, rank in talents.items():
            if rank <= 0 or graph.get_talent(talent_id) is None:
                continue
            if graph.is_hidden(talent_id):
                continue
            if not graph.meets_rank_gate(talent_id, points) or not graph.meets_prerequisites(
                talent_id, talents
            ):
                count += 1
    return count


def ensure_creature_archetype_build(
    selection: Mapping[str, Mapping[str, int]],
    model: TalentModel,
    archetype_id: str,
    graphs: Mapping[str, TalentGraph] | None = None,
) -> TalentSelection:
    """Scope a creature selection to one archetype and pin origin talents.

    Trees outside the archetype are dropped. Every tree gets its origin
    talent at rank >= 1. An unknown archetype yields an empty selection.
    """
    archetype = model.archetypes.get(archetype_id)
    if archetype is None:
        return {}
    scoped = normalize_selection(selection)
    result: TalentSelection = {}
    for tree_id, tree in archetype.trees.items():
        ranks = dict(scoped.get(tree_id, {}))
        graph = graphs.get(tree_id) if graphs is not None else None
        origin_id = (graph or TalentGraph.build(tree)).origin_talent()
        if origin_id and ranks.get(origin_id, 0) < 1:
            ranks[origin_id] = 1
        if ranks:
            result[tree_id] = ranks
    return result


def has_meaningful_build(
    catalog: TalentCatalog,
    model_id: str,
    archetype_id: str,
    selection: Mapping[str, Mapping[str, int]],
    modifier_ids: Iterable[str] = (),
) -> bool:
    """True if the build differs from a freshly reset one."""
    model = catalog.model(model_id)
    if model_id != MODEL_CREATURE or model is None:
        spent = any(r > 0 for talents in selection.values() for r in talents.values())
        return spent or bool(normalize_modifier_ids(list(modifier_ids)))
    baseline = ensure_creature_archetype_build({}, model, archetype_id)
    current = ensure_creature_archetype_build(selection, model, archetype_id)
    return current != baseline


# ---------------------------------------------------------------------------
# SelectionState
# ---------------------------------------------------------------------------


class SelectionState:
    """Holds the current selection snapshot for one model and applies edits.

    Consumes the catalog without modifying it. Tree graphs are built once
    per instance.
    """

    __slots__ = (
        "_catalog",
        "_model",
        "_archetype_id",
        "_config",
        "_modifier_ids",
        "_selection",
        "_graphs",
        "_tree_archetypes",
        "_creature_caps",
    )

    def __init__(
        self,
        catalog: TalentCatalog,
        model_id: str,
        archetype_id: str = "",
        selection: Mapping[str, Mapping[str, int]] | None = None,
        modifier_ids: Iterable[str] = (),
        config: BuildConfig | None = None,
    ) -> None:
        model = catalog.model(model_id)
        if model is None:
            raise ValueError(f"Unknown model {model_id!r}")
        self._catalog = catalog
        self._model = model
        self._archetype_id = archetype_id
        self._config = config or BuildConfig()
        self._graphs = build_graphs(model, catalog.ranks)
        self._tree_archetypes = model.tree_archetype_map()
        self._creature_caps = creature_tree_caps(model, self._config)
        self._modifier_ids: list[str] = []
        self._selection: TalentSelection = {}
        self.set_modifiers(modifier_ids)
        self.load(selection or {})

    # --- Properties ----------------------------------------------------------

    @property
    def selection(self) -> TalentSelection:
        """Current snapshot. Treat as read-only; edits go through set_rank."""
        return self._selection

    @property
    def model(self) -> TalentModel:
        return self._model

    @property
    def archetype_id(self) -> str:
        return self._archetype_id

    @property
    def is_creature(self) -> bool:
        return self._model.id == MODEL_CREATURE

    @property
    def modifier_ids(self) -> list[str]:
        return list(self._modifier_ids)

    @property
    def main_cap(self) -> float:
        return max_player_talent_points(
            self._modifier_ids, self._catalog.player_modifiers, self._config
        )

    def graph(self, tree_id: str) -> TalentGraph | None:
        return self._graphs.get(tree_id)

    def origin_talent(self, tree_id: str) -> str | None:
        """Pinned origin talent of a creature tree; None for player trees."""
        if not self.is_creature:
            return None
        graph = self._graphs.get(tree_id)
        return graph.origin_talent() if graph is not None else None

    # --- Snapshot replacement --------------------------------------------------

    def load(self, selection: Mapping[str, Mapping[str, int]]) -> TalentSelection:
        """Replace the snapshot with an external selection.

        The selection is normalized (and scoped/pinned for creatures) but
        never stripped of talents with unmet gates or points over a cap.
        """
        if self.is_creature:
            self._selection = ensure_creature_archetype_build(
                selection, self._model, self._archetype_id, self._graphs
            )
        else:
            self._selection = normalize_selection(selection)
        return self._selection

    def reset(self) -> TalentSelection:
        return self.load({})

    def set_modifiers(self, modifier_ids: Iterable[str]) -> None:
        self._modifier_ids = normalize_modifier_ids(
            list(modifier_ids), self._catalog.player_modifiers
        )

    # --- Queries ---------------------------------------------------------------

    def tree_points(self, tree_id: str) -> int:
        return tree_points(self._selection, tree_id)

    def summarize(self) -> PointSummary:
        return summarize_points(self._selection, self._tree_archetypes)

    def is_overcap(self) -> bool:
        if self.is_creature:
            return is_creature_overcap(self._selection, self._model, self._config)
        return is_player_overcap(self._selection, self._model, self.main_cap, self._config)

    def unmet_talent_count(self) -> int:
        return count_unmet_talents(self._selection, self._model, self._graphs)

    def minimum_level(self) -> int:
        bonus = player_talent_point_bonus(
            self._modifier_ids, self._catalog.player_modifiers
        )
        return minimum_character_level(self.summarize(), bonus, self._config)

    def effect_summary(self, include_solo: bool = True) -> list[EffectTotal]:
        """Stat totals for the current build. Creatures count only their archetype."""
        tree_ids = self._archetype_trees() if self.is_creature else None
        return summarize_effects(self._selection, self._model, include_solo, tree_ids)

    def _archetype_trees(self) -> set[str]:
        archetype = self._model.archetypes.get(self._archetype_id)
        return {tree.id for tree in archetype.trees.values()} if archetype is not None else set()

    # --- Edits -----------------------------------------------------------------

    def set_rank(self, tree_id: str, talent_id: str, new_rank: int) -> RankChange:
        """Set a talent's rank, returning the new or unchanged snapshot."""
        previous = self._selection
        graph = self._graphs.get(tree_id)
        if graph is None or graph.get_talent(talent_id) is None:
            return self._reject(f"unknown talent {tree_id}/{talent_id}")
        if self.is_creature and tree_id not in self._archetype_trees():
            return self._reject(f"tree {tree_id} is outside archetype {self._archetype_id!r}")
        if isinstance(new_rank, bool) or not isinstance(new_rank, int) or new_rank < 0:
            return self._reject(f"invalid rank {new_rank!r}")

        tree_selection = previous.get(tree_id, {})
        current_rank = tree_selection.get(talent_id, 0)
        if new_rank == current_rank:
            return RankChange(previous, False, "unchanged")

        origin_id = self.origin_talent(tree_id)
        if talent_id == origin_id and new_rank < 1:
            return self._reject(f"origin talent {talent_id} is pinned")

        if new_rank > current_rank:
            if graph.is_hidden(talent_id):
                return self._reject(f"{talent_id} is not selectable")
            if new_rank > graph.rank_count(talent_id):
                return self._reject(
                    f"{talent_id} has {graph.rank_count(talent_id)} ranks, got {new_rank}"
                )
            # Gates apply only when starting a talent from zero.
            if current_rank == 0 and not graph.can_unlock(talent_id, tree_selection):
                return self._reject(f"{talent_id} requirements not met")

        next_tree = dict(tree_selection)
        if new_rank > 0:
            next_tree[talent_id] = new_rank
        else:
            next_tree.pop(talent_id, None)
        if new_rank < current_rank:
            next_tree = cascade_invalidate(next_tree, graph, origin_id)

        next_selection = dict(previous)
        if next_tree:
            next_selection[tree_id] = next_tree
        else:
            next_selection.pop(tree_id, None)

        if self._exceeds_cap(previous, next_selection, tree_id):
            return self._reject(f"point cap reached for {tree_id}")

        self._selection = next_selection
        return RankChange(next_selection, True)

    # --- Internal helpers ------------------------------------------------------

    def _reject(self, reason: str) -> RankChange:
        logger.debug("rank change rejected: %s", reason)
        return RankChange(self._selection, False, reason)

    def _exceeds_cap(
        self,
        previous: TalentSelection,
        candidate: TalentSelection,
        tree_id: str,
    ) -> bool:
        """True if the edited pool grows past its cap.

        A selection loaded over cap may shrink freely; it just can't grow.
        """
        if self.is_creature:
            cap = self._creature_caps.get(tree_id)
            if cap is None:
                return False
            after = tree_points(candidate, tree_id)
            return after > cap and after > tree_points(previous, tree_id)

        before = summarize_points(previous, self._tree_archetypes)
        after = summarize_points(candidate, self._tree_archetypes)
        if self._tree_archetypes.get(tree_id) == SOLO_ARCHETYPE_ID:
            return (
                after.solo_points > self._config.max_solo_points
                and after.solo_points > before.solo_points
            )
        return after.main_points > self.main_cap and after.main_points > before.main_points
