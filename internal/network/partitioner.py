"""Network partitioner: split a root address space into per-tier, per-AZ subnets.

Allocation walks the root block in declaration order (tier by tier, zone by
zone), aligning each subnet to its own size, so subnets never overlap. A tier
without an explicit mask gets an equal share: the remaining host bits are
divided across tiers x zones partitions.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

from internal.models.errors import CapacityExceeded, InvalidTopologyConfig
from internal.models.types import (
    AddressSpace, Subnet, Tier,
    SUBNET_PUBLIC, SUBNET_PRIVATE_WITH_EGRESS, SUBNET_PRIVATE_ISOLATED,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubnetRequest:
    """One tier's placement request: exposure, optional fixed mask, NAT egress."""
    tier: Tier
    public: bool
    cidr_mask: Optional[int] = None
    nat_egress: bool = False

    @property
    def subnet_type(self) -> str:
        if self.public:
            return SUBNET_PUBLIC
        if self.nat_egress:
            return SUBNET_PRIVATE_WITH_EGRESS
        return SUBNET_PRIVATE_ISOLATED


def equal_share_mask(prefixlen: int, partitions: int) -> int:
    """Smallest mask that fits `partitions` equal subnets in a /prefixlen block."""
    return prefixlen + (partitions - 1).bit_length()


def partition(space: AddressSpace, requests) -> dict:
    """Allocate one subnet per (tier, availability zone).

    Returns an insertion-ordered dict keyed by (Tier, az_index).

    Raises:
        CapacityExceeded: If the root block cannot hold every subnet.
        InvalidTopologyConfig: If the zone count or tier list is unusable.
    """
    requests = list(requests)
    if space.az_count < 1:
        raise InvalidTopologyConfig(["az_count must be >= 1"])
    if not requests:
        raise InvalidTopologyConfig(["at least one tier is required"])

    root = ipaddress.ip_network(space.cidr, strict=True)
    start = int(root.network_address)
    end = start + root.num_addresses
    default_mask = equal_share_mask(root.prefixlen, len(requests) * space.az_count)

    allocated = {}
    cursor = start
    for req in requests:
        mask = req.cidr_mask if req.cidr_mask is not None else default_mask
        if mask < root.prefixlen or mask > root.max_prefixlen:
            raise CapacityExceeded(
                f"/{mask} subnets for tier '{req.tier.label}' do not fit in {root}"
            )
        size = 1 << (root.max_prefixlen - mask)
        for az in range(space.az_count):
            cursor = -(-cursor // size) * size  # align up to the subnet boundary
            if cursor + size > end:
                raise CapacityExceeded(
                    f"{root} cannot hold {len(requests) * space.az_count} subnets: "
                    f"ran out of space at tier '{req.tier.label}', zone {az + 1} (/{mask})"
                )
            block = ipaddress.ip_network((cursor, mask))
            allocated[(req.tier, az)] = Subnet(
                tier=req.tier, az_index=az, cidr=str(block), subnet_type=req.subnet_type,
            )
            cursor += size

    logger.debug("Partitioned %s into %d subnets", root, len(allocated))
    return allocated
