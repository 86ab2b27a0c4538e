"""Talent catalog data model.

The catalog is a read-only tree of models → archetypes → trees → talents,
plus a flat list of player point modifiers. Dict insertion order is the
catalog order and is relied on wherever a "first" entry is chosen.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class TalentEffect:
    """One stat modifier granted by a reward tier.

    modifier_id is the Value="..." part of the export's rawKey, or the whole
    rawKey when it has none. A tier may list the same modifier more than once.
    """
    modifier_id: str
    value: float = 0


@dataclass(slots=True)
class RewardTier:
    """Effects granted by one rank of a talent."""
    effects: list[TalentEffect] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Talent:
    """A single node in a talent tree.

    required_talents uses OR semantics: any one selected id satisfies it.
    rewards is None when the source row carried no reward list at all,
    which is distinct from an empty list.
    """
    id: str
    tree_id: str
    rewards: list[RewardTier] | None = None
    rank_count: int | None = None          # explicit override
    required_rank: str | None = None       # rank tier name, e.g. "Apprentice"
    required_talents: list[str] = field(default_factory=list)
    talent_type: str | None = None         # "Reroute" for relay nodes
    size: tuple[float, float] | None = None
    default_unlocked: bool = False
    display: str = ""


@dataclass(slots=True)
class Tree:
    id: str
    archetype_id: str
    talents: dict[str, Talent] = field(default_factory=dict)
    display: str = ""


@dataclass(slots=True)
class Archetype:
    id: str
    model_id: str
    trees: dict[str, Tree] = field(default_factory=dict)
    display: str = ""


@dataclass(slots=True)
class TalentModel:
    """Top-level subject a build applies to (Player or Creature)."""
    id: str
    archetypes: dict[str, Archetype] = field(default_factory=dict)

    def tree_lookup(self) -> dict[str, Tree]:
        """Return every tree in the model keyed by tree id."""
        return {
            tree.id: tree
            for archetype in self.archetypes.values()
            for tree in archetype.trees.values()
        }

    def tree_archetype_map(self) -> dict[str, str]:
        """Return tree id → owning archetype id."""
        return {
            tree.id: archetype.id
            for archetype in self.archetypes.values()
            for tree in archetype.trees.values()
        }

    def first_archetype_id(self) -> str:
        for archetype_id in self.archetypes:
            return archetype_id
        return ""


@dataclass(slots=True)
class PointModifier:
    """A player-selectable bonus to the main talent point pool."""
    id: str
    talent_point_modifier: float = 0


@dataclass(slots=True)
class RankInfo:
    id: str
    investment: int = 0
    next_rank: str | None = None


@dataclass(slots=True)
class TalentCatalog:
    schema_version: int | None = None
    models: dict[str, TalentModel] = field(default_factory=dict)
    player_modifiers: list[PointModifier] = field(default_factory=list)
    ranks: dict[str, RankInfo] = field(default_factory=dict)

    def model(self, model_id: str) -> TalentModel | None:
        return self.models.get(model_id)
