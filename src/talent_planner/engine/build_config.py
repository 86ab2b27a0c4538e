"""Configuration knobs for the selection engine.

Defaults match the shipped game data. Data updates may change the base
talent point pool or creature level caps.
"""

from dataclasses import dataclass

from talent_planner.models.constants import (
    CREATURE_MOUNT_LEVEL_CAP,
    CREATURE_PET_LEVEL_CAP,
    MAX_CHARACTER_LEVEL,
    MAX_SOLO_POINTS,
    MAX_TALENT_POINTS,
)


@dataclass(slots=True)
class BuildConfig:
    """Point caps that aren't stored in the talent catalog."""

    max_talent_points: int = MAX_TALENT_POINTS   # before modifier bonuses
    max_solo_points: int = MAX_SOLO_POINTS
    mount_level_cap: int = CREATURE_MOUNT_LEVEL_CAP
    pet_level_cap: int = CREATURE_PET_LEVEL_CAP
    max_character_level: int = MAX_CHARACTER_LEVEL
