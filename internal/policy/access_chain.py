"""Access policy chain: one security boundary per tier, linked edge -> compute -> data.

Each boundary admits exactly one source: the boundary of the tier directly
below it. The edge boundary instead admits the public address space on its
listener port. Rules are keyed to boundary identity, never to raw addresses.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from internal.models.errors import InvalidChain
from internal.models.types import PUBLIC_CIDR, AllowRule, SecurityBoundary, Tier
from internal.policy.tiers import TIERS, is_adjacent, previous_tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleRequest:
    """Request to admit `source` (None = public internet) into `destination`."""
    source: Optional[Tier]
    destination: Tier
    port: int
    protocol: str = "tcp"


def chain_requests(tiers, ports: dict) -> list:
    """The rule requests implied by a tier sequence: one per incoming transition."""
    requests = []
    for position, tier in enumerate(tiers):
        source = None if position == 0 else tiers[position - 1]
        requests.append(RuleRequest(
            source=source,
            destination=tier,
            port=ports[tier],
            protocol=TIERS[tier].protocol,
        ))
    return requests


def validate_rule(req: RuleRequest, declared: set, ports: dict) -> None:
    """Reject any rule that breaks the chain.

    Raises:
        InvalidChain: For public ingress outside the edge, sources in the data
            tier, skipped or reversed tiers, and undeclared tiers.
    """
    if req.destination not in declared:
        raise InvalidChain(f"tier '{req.destination.label}' is not part of the topology")
    if req.source is None:
        if req.destination != Tier.EDGE:
            raise InvalidChain(
                f"only the edge boundary may admit the public internet, "
                f"not '{req.destination.label}'"
            )
        if req.port != ports[Tier.EDGE]:
            raise InvalidChain(
                f"public ingress is only allowed on the edge port {ports[Tier.EDGE]}, "
                f"not {req.port}"
            )
        return
    if req.source == Tier.DATA:
        raise InvalidChain("the data tier may not source traffic into another tier")
    if req.source not in declared:
        raise InvalidChain(f"tier '{req.source.label}' is not part of the topology")
    if not is_adjacent(req.source, req.destination):
        raise InvalidChain(
            f"'{req.destination.label}' may only admit traffic from "
            f"'{_label(previous_tier(req.destination))}', not from '{req.source.label}'"
        )


def build_access_chain(tiers, ports: dict, extra_rules=()) -> dict:
    """Build one SecurityBoundary per tier, in tier order.

    `ports` maps each Tier to the inbound port of its boundary. `extra_rules`
    are additional RuleRequests; any that add a second rule for a transition
    are rejected as over-permissive.

    Raises:
        InvalidChain: If the sequence or any requested rule breaks the chain.
    """
    tiers = list(tiers)
    if sorted(set(tiers)) != tiers:
        raise InvalidChain(
            f"tiers must be unique and in edge < compute < data order, got "
            f"{[t.label for t in tiers]}"
        )

    declared = set(tiers)
    requests = chain_requests(tiers, ports) + list(extra_rules)
    rules = {tier: [] for tier in tiers}
    for req in requests:
        validate_rule(req, declared, ports)
        if rules[req.destination]:
            raise InvalidChain(
                f"'{req.destination.label}' already has its ingress rule; "
                "additional rules are over-permissive"
            )
        rules[req.destination].append(_allow_rule(req))

    boundaries = {
        tier: SecurityBoundary(tier=tier, rules=tuple(rules[tier]))
        for tier in tiers
    }
    logger.debug(
        "Built access chain %s",
        " -> ".join(["internet"] + [t.label for t in tiers]),
    )
    return boundaries


def _allow_rule(req: RuleRequest) -> AllowRule:
    if req.source is None:
        return AllowRule(
            port=req.port,
            protocol=req.protocol,
            source_cidr=PUBLIC_CIDR,
            description=f"Allow {req.protocol.upper()} {req.port} from internet",
        )
    return AllowRule(
        port=req.port,
        protocol=req.protocol,
        source_boundary=SecurityBoundary(tier=req.source).id,
        description=f"{req.source.label} to {req.destination.label} on {req.port}",
    )


def _label(tier) -> str:
    return tier.label if tier is not None else "internet"
