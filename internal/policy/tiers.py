"""Tier framework: the fixed three-tier ordering and per-tier defaults.

Each tier defines:
  - Its rank in the total order (edge < compute < data)
  - The default inbound port and protocol guarding its boundary
  - Whether its subnets are public by default (None = decided by placement policy)

Traffic is admitted only from a tier into the tier directly above it.
"""

from dataclasses import dataclass
from typing import Optional

from internal.models.types import Tier


@dataclass(frozen=True)
class TierDefinition:
    """Immutable tier definition."""
    tier: Tier
    default_port: int
    protocol: str
    public: Optional[bool]
    description: str = ""

    @property
    def name(self) -> str:
        return self.tier.label


# ── Tier Registry ────────────────────────────────────────────────────────────

TIERS: dict = {
    Tier.EDGE: TierDefinition(
        tier=Tier.EDGE,
        default_port=80,
        protocol="tcp",
        public=True,
        description=(
            "Internet-facing load balancer. The only tier whose boundary "
            "admits the public address space, and only on its listener port."
        ),
    ),
    Tier.COMPUTE: TierDefinition(
        tier=Tier.COMPUTE,
        default_port=80,
        protocol="tcp",
        public=None,
        description=(
            "Application fleet. Admits traffic from the edge boundary only. "
            "Subnet exposure is chosen by the compute placement policy."
        ),
    ),
    Tier.DATA: TierDefinition(
        tier=Tier.DATA,
        default_port=3306,
        protocol="tcp",
        public=False,
        description=(
            "Isolated database tier with no outward route. Admits traffic "
            "from the compute boundary only."
        ),
    ),
}


def get_tier(name):
    """Return the TierDefinition for the given name or Tier, or None."""
    try:
        return TIERS.get(Tier.parse(name))
    except ValueError:
        return None


def list_tiers() -> list:
    """Return all tier definitions in tier order."""
    return [TIERS[t] for t in sorted(TIERS)]


def previous_tier(tier: Tier) -> Optional[Tier]:
    """Return the tier directly below `tier`, or None for the edge."""
    if tier == Tier.EDGE:
        return None
    return Tier(tier - 1)


def is_adjacent(source: Tier, destination: Tier) -> bool:
    """True when traffic from `source` into `destination` follows the chain."""
    return destination - source == 1
