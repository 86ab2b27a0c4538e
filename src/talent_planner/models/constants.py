"""Model ids, rank tiers, point caps, and share-token constants.

Values mirror the game's talent rules. Mods or data updates may change the
caps; the engine reads them through BuildConfig.
"""

from enum import IntEnum


MODEL_PLAYER = "Player"
MODEL_CREATURE = "Creature"
ENABLED_MODELS: tuple[str, ...] = (MODEL_PLAYER, MODEL_CREATURE)


class RankTier(IntEnum):
    """Cumulative tree investment needed to unlock talents gated at a tier."""
    NOVICE = 0
    APPRENTICE = 4
    JOURNEYMAN = 8
    MASTER = 12


# Catalog rank names as they appear in requiredRank.
RANK_TIER_NAMES: dict[str, RankTier] = {
    "Novice": RankTier.NOVICE,
    "Apprentice": RankTier.APPRENTICE,
    "Journeyman": RankTier.JOURNEYMAN,
    "Master": RankTier.MASTER,
}


def tier_threshold(name: str) -> int | None:
    """Return the point threshold for a rank tier name, or None if unknown."""
    tier = RANK_TIER_NAMES.get(name)
    return int(tier) if tier is not None else None


# Point pools
MAX_TALENT_POINTS = 90
MAX_SOLO_POINTS = 30
CREATURE_MOUNT_LEVEL_CAP = 50
CREATURE_PET_LEVEL_CAP = 25
MAX_CHARACTER_LEVEL = 60

SOLO_ARCHETYPE_ID = "Solo"
CREATURE_BASE_ARCHETYPE_ID = "Creature_Base"

# Creature tree categories
CATEGORY_MOUNT = "mount"
CATEGORY_COMBAT_PET = "combatPet"
CATEGORY_REGULAR_PET = "regularPet"

COMBAT_PET_TALENT_PREFIX = "CombatPet_"
REGULAR_PET_TALENT_PREFIX = "NonCombatPet_"

# Homestead creatures use combat-pet talent names but level like livestock.
REGULAR_PET_TREE_OVERRIDES = frozenset({"Creature_Bull", "Creature_Pig"})

# Talent type tag for pure edge-relay nodes.
REROUTE_TALENT_TYPE = "Reroute"

# Share token
CODEC_VERSION = 1
SHARE_BUILD_QUERY_KEY = "build"
TITLE_MAX_LENGTH = 80
DESCRIPTION_MAX_LENGTH = 240

# Persisted snapshot keys
SAVED_BUILDS_STORAGE_KEY = "talent_saved_builds_v1"
ACTIVE_BUILDS_STORAGE_KEY = "talent_active_builds_v2"
