"""Per-tree talent dependency graph with hidden-relay collapsing.

Catalog trees contain "relay" nodes (Reroute talents and legacy zero-size
nodes) that exist only to bend prerequisite edges on screen. They can never
be selected, so a talent that requires a relay effectively requires whatever
the relay itself requires. The graph collapses those chains once and
answers gate questions against a tree selection:

  effective requirements = OR(real₁, real₂, ...)
  meets prerequisites    = no requirements, or any one has rank > 0
  meets rank gate        = no tier, or tree points >= tier threshold
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from talent_planner.models.constants import tier_threshold
from talent_planner.models.talent import RankInfo, Talent, Tree
from talent_planner.parser.talent_classification import TalentKind, classify_talent


@dataclass(frozen=True, slots=True)
class EffectiveRequirement:
    """A real talent that satisfies a requirement.

    via lists the hidden relay ids crossed to reach it, nearest first.
    Empty for a direct requirement.
    """

    talent_id: str
    via: tuple[str, ...] = ()


class TalentGraph:
    """Resolved prerequisite view of a single tree.

    Pure function of the tree's talent map; the tree is never modified.
    """

    __slots__ = ("_tree", "_kinds", "_requirements", "_ranks")

    def __init__(self, tree: Tree, ranks: Mapping[str, RankInfo] | None = None) -> None:
        self._tree = tree
        self._ranks = ranks or {}
        self._kinds: dict[str, TalentKind] = {
            tid: classify_talent(talent) for tid, talent in tree.talents.items()
        }
        self._requirements: dict[str, list[EffectiveRequirement]] = {}

    # --- Construction --------------------------------------------------------

    @classmethod
    def build(cls, tree: Tree, ranks: Mapping[str, RankInfo] | None = None) -> TalentGraph:
        """Build the graph for *tree*.

        *ranks* is the catalog's rank table; tiers it lists use its
        investment, others fall back to the built-in thresholds.
        """
        return cls(tree, ranks)

    # --- Classification ------------------------------------------------------

    @property
    def tree(self) -> Tree:
        return self._tree

    def get_talent(self, talent_id: str) -> Talent | None:
        return self._tree.talents.get(talent_id)

    def kind(self, talent_id: str) -> TalentKind | None:
        return self._kinds.get(talent_id)

    def is_hidden(self, talent_id: str) -> bool:
        """True for relay nodes. Unknown ids are not hidden."""
        kind = self._kinds.get(talent_id)
        return kind is not None and kind.is_hidden

    def rank_count(self, talent_id: str) -> int:
        kind = self._kinds.get(talent_id)
        return kind.rank_count if kind is not None else 0

    def visible_talent_ids(self) -> list[str]:
        return [tid for tid, kind in self._kinds.items() if not kind.is_hidden]

    # --- Requirement resolution ----------------------------------------------

    def effective_requirements(self, talent_id: str) -> list[EffectiveRequirement]:
        """Return the OR-set of real talents that satisfy *talent_id*'s requirement.

        Hidden requirements are replaced by their own requirements, depth
        first, preserving declaration order. A relay already on the current
        path contributes nothing (cycle), as does a relay with no
        requirements (dead end). Ids missing from the tree are kept as-is.
        Results are deduplicated by talent id, first seen wins.
        """
        cached = self._requirements.get(talent_id)
        if cached is not None:
            return list(cached)

        talent = self._tree.talents.get(talent_id)
        resolved: list[EffectiveRequirement] = []
        if talent is not None:
            resolved = self._expand(talent.required_talents)
        self._requirements[talent_id] = resolved
        return list(resolved)

    def _expand(self, required_ids: list[str]) -> list[EffectiveRequirement]:
        resolved: list[EffectiveRequirement] = []
        seen: set[str] = set()
        # Each frame carries the relay path that led to it; the path doubles
        # as the visiting set, so it is bounded by the number of relays.
        stack: list[tuple[str, tuple[str, ...]]] = [
            (rid, ()) for rid in reversed(required_ids)
        ]
        while stack:
            required_id, via = stack.pop()
            if not required_id or required_id in via:
                continue
            if not self.is_hidden(required_id):
                if required_id not in seen:
                    seen.add(required_id)
                    resolved.append(EffectiveRequirement(required_id, via))
                continue
            relay = self._tree.talents[required_id]
            path = via + (required_id,)
            for nested_id in reversed(relay.required_talents):
                stack.append((nested_id, path))
        return resolved

    def effective_requirement_ids(self, talent_id: str) -> list[str]:
        return [req.talent_id for req in self.effective_requirements(talent_id)]

    # --- Gates ---------------------------------------------------------------

    def meets_prerequisites(
        self, talent_id: str, tree_selection: Mapping[str, int]
    ) -> bool:
        """OR: any effective requirement with a positive rank passes."""
        required = self.effective_requirement_ids(talent_id)
        if not required:
            return True
        return any(tree_selection.get(rid, 0) > 0 for rid in required)

    def rank_threshold(self, tier_name: str) -> int | None:
        rank = self._ranks.get(tier_name)
        if rank is not None:
            return rank.investment
        return tier_threshold(tier_name)

    def meets_rank_gate(self, talent_id: str, tree_points: int) -> bool:
        talent = self._tree.talents.get(talent_id)
        if talent is None or not talent.required_rank:
            return True
        threshold = self.rank_threshold(talent.required_rank)
        if threshold is None:
            # Unknown tier name: fail conservatively.
            return False
        return tree_points >= threshold

    def can_unlock(self, talent_id: str, tree_selection: Mapping[str, int]) -> bool:
        """True if a new selection of *talent_id* may start from rank 0."""
        if talent_id not in self._tree.talents or self.is_hidden(talent_id):
            return False
        points = sum(tree_selection.values())
        return self.meets_rank_gate(talent_id, points) and self.meets_prerequisites(
            talent_id, tree_selection
        )

    def unmet_requirements(
        self, talent_id: str, tree_selection: Mapping[str, int]
    ) -> list[str]:
        """Return human-readable descriptions of unmet gates."""
        talent = self._tree.talents.get(talent_id)
        if talent is None:
            return [f"Unknown talent {talent_id!r}"]
        if self.is_hidden(talent_id):
            return ["Not selectable (relay node)"]

        unmet: list[str] = []
        points = sum(tree_selection.values())
        if not self.meets_rank_gate(talent_id, points):
            threshold = self.rank_threshold(talent.required_rank or "")
            if threshold is None:
                unmet.append(f"Unknown rank tier {talent.required_rank!r}")
            else:
                unmet.append(
                    f"{talent.required_rank} rank ({threshold} points in tree, have {points})"
                )
        if not self.meets_prerequisites(talent_id, tree_selection):
            required = self.effective_requirement_ids(talent_id)
            if len(required) == 1:
                unmet.append(f"Talent {required[0]}")
            else:
                unmet.append("One of: " + " OR ".join(required))
        return unmet

    # --- Creature origin -----------------------------------------------------

    def origin_talent(self) -> str | None:
        """Pick the talent a creature tree starts with.

        Preference: a default-unlocked, single-tier root; then the first
        root; then the first selectable talent. Roots are visible talents
        whose declared requirement list is empty.
        """
        visible = [
            self._tree.talents[tid] for tid in self.visible_talent_ids()
        ]
        if not visible:
            return None
        roots = [t for t in visible if not t.required_talents]
        for talent in roots:
            tiers = len(talent.rewards) if talent.rewards is not None else 1
            if talent.default_unlocked and tiers == 1:
                return talent.id
        if roots:
            return roots[0].id
        return visible[0].id
