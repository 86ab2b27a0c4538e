"""Talent classification helpers.

Every talent is exactly one of:
  - real: selectable, effective rank count >= 1
  - hidden_relay: rank count <= 0; exists only to relay prerequisite edges

The rank count derivation is deterministic and data-driven:
  1. explicit rank_count override (>= 0) wins
  2. talent_type == "Reroute" → 0
  3. non-empty reward list → number of reward tiers
  4. reward list absent → 1
  5. empty reward list with zero/absent size (legacy reroute) → 0
  6. otherwise → 1
"""

from dataclasses import dataclass

from talent_planner.models.constants import REROUTE_TALENT_TYPE
from talent_planner.models.talent import Talent


REAL = "real"
HIDDEN_RELAY = "hidden_relay"


@dataclass(frozen=True)
class TalentKind:
    name: str
    reason: str
    rank_count: int

    @property
    def is_hidden(self) -> bool:
        return self.name == HIDDEN_RELAY


def is_reroute_talent(talent: Talent) -> bool:
    return talent.talent_type == REROUTE_TALENT_TYPE


def is_legacy_reroute_talent(talent: Talent) -> bool:
    """Older exports have no type tag; relays show up as zero-size nodes."""
    width, height = talent.size if talent.size is not None else (0, 0)
    return width == 0 and height == 0


def _derive_rank_count(talent: Talent) -> tuple[int, str]:
    explicit = talent.rank_count
    if explicit is not None and explicit >= 0:
        return explicit, "explicit rank count"
    if is_reroute_talent(talent):
        return 0, "Reroute talent type"
    if talent.rewards is None:
        return 1, "no reward list"
    if talent.rewards:
        return len(talent.rewards), "reward tiers"
    if is_legacy_reroute_talent(talent):
        return 0, "empty rewards with zero size (legacy reroute)"
    return 1, "empty rewards"


def effective_rank_count(talent: Talent) -> int:
    return _derive_rank_count(talent)[0]


def classify_talent(talent: Talent) -> TalentKind:
    rank_count, reason = _derive_rank_count(talent)
    if rank_count <= 0:
        return TalentKind(HIDDEN_RELAY, reason, rank_count)
    return TalentKind(REAL, reason, rank_count)
