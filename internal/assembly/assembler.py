"""Topology assembler: compose every stage into one ordered resource set.

Flow:
  1. Validate the declaration.
  2. Partition the address space into per-tier, per-AZ subnets.
  3. Build the access chain (one boundary per tier).
  4. Build the network and database descriptors.
  5. Render the bootstrap script against the database's late-bound endpoint.
  6. Build the compute fleet and edge balancer descriptors.
  7. Topologically order descriptors by their references (cycles rejected).
  8. Bind outputs: edge address, database endpoint, credential reference.

Assembly is pure: no I/O, no retries, and it either returns a complete
AssemblyResult or raises. Late-bound values are passed forward as
references and never read.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType

from internal.bootstrap.parameterizer import REFERENCE_TEMPLATE, reference_mapping, render
from internal.descriptors.builders import (
    build_compute_fleet_descriptor, build_database_descriptor,
    build_edge_balancer_descriptor, build_network_descriptor,
)
from internal.models.config import PLACEMENT_PUBLIC, TopologyConfig
from internal.models.errors import (
    CycleDetected, InvalidTopologyConfig, LateBindingError, UnresolvedDependency,
)
from internal.models.types import AddressSpace, OutputBinding, Tier
from internal.network.partitioner import SubnetRequest, partition
from internal.policy.access_chain import build_access_chain
from internal.policy.tiers import TIERS

logger = logging.getLogger(__name__)

OUTPUT_EDGE_ADDRESS = "edgeAddress"
OUTPUT_DATABASE_ENDPOINT = "databaseEndpoint"
OUTPUT_CREDENTIAL_REFERENCE = "credentialReference"


@dataclass(frozen=True)
class AssemblyResult:
    """Dependency-ordered descriptors plus read-only output bindings."""
    name: str
    resources: tuple
    outputs: MappingProxyType

    def resource(self, resource_id: str):
        for descriptor in self.resources:
            if descriptor.id == resource_id:
                return descriptor
        raise KeyError(resource_id)

    @property
    def order(self) -> list:
        return [d.id for d in self.resources]

    def late_bound(self) -> dict:
        """Every late-bound value produced by the resource set, keyed by token."""
        values = {}
        for descriptor in self.resources:
            for value in descriptor.produces():
                values[value.token] = value
        return values

    def resolve(self, token: str, value: str) -> None:
        """Record a provider-produced value. Each token resolves exactly once."""
        late = self.late_bound().get(token)
        if late is None:
            raise LateBindingError(f"no resource produces {token}")
        late.resolve(value)

    def outputs_surface(self) -> dict:
        """Outputs whose values are known. Unresolved bindings are omitted, never stubbed."""
        return {name: binding.render() for name, binding in self.outputs.items() if binding.resolved}

    def pending_outputs(self) -> dict:
        """Output name to the late-bound token it still waits on."""
        return {
            name: binding.source.token
            for name, binding in self.outputs.items()
            if not binding.resolved
        }

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "order": self.order,
            "resources": [d.to_dict() for d in self.resources],
            "outputs": self.outputs_surface(),
            "pendingOutputs": self.pending_outputs(),
            "lateBound": sorted(self.late_bound()),
        }


def order_descriptors(descriptors) -> tuple:
    """Topologically sort descriptors so every producer precedes its consumers.

    Ties keep the input order, so the result is deterministic.

    Raises:
        UnresolvedDependency: If a descriptor references an id not in the set.
        CycleDetected: If the reference graph contains a cycle.
    """
    descriptors = list(descriptors)
    by_id = {}
    for d in descriptors:
        if d.id in by_id:
            raise InvalidTopologyConfig([f"duplicate descriptor id '{d.id}'"])
        by_id[d.id] = d

    pending = {}
    for d in descriptors:
        refs = d.references()
        unknown = sorted(refs - set(by_id))
        if unknown:
            raise UnresolvedDependency(f"'{d.id}' references unknown resource(s) {unknown}")
        pending[d.id] = set(refs)

    ordered = []
    while pending:
        ready = [d.id for d in descriptors if d.id in pending and not pending[d.id]]
        if not ready:
            raise CycleDetected(pending)
        current = ready[0]
        ordered.append(by_id[current])
        del pending[current]
        for refs in pending.values():
            refs.discard(current)
    return tuple(ordered)


def subnet_requests(config: TopologyConfig) -> list:
    requests = []
    for layout in config.network.tiers:
        public = layout.public
        if public is None:
            public = TIERS[layout.tier].public
        if public is None:
            public = config.compute.placement == PLACEMENT_PUBLIC
        requests.append(SubnetRequest(
            tier=layout.tier,
            public=public,
            cidr_mask=layout.cidr_mask,
            nat_egress=layout.tier == Tier.COMPUTE and not public,
        ))
    return requests


def assemble(config: TopologyConfig) -> AssemblyResult:
    """Build the complete, ordered resource set for `config`.

    Raises:
        TopologyError: Any validation failure; no partial result is returned.
    """
    config.check()
    net = config.network

    subnets = partition(AddressSpace(cidr=net.cidr, az_count=net.az_count), subnet_requests(config))
    logger.info("Partitioned %s into %d subnets across %d AZs", net.cidr, len(subnets), net.az_count)

    tiers = [layout.tier for layout in net.tiers]
    ports = {tier: config.ports.for_tier(tier) for tier in Tier}
    boundaries = build_access_chain(tiers, ports)
    logger.info("Built %d security boundaries", len(boundaries))

    network = build_network_descriptor(config, subnets, boundaries)
    database = build_database_descriptor(config, network)

    template = config.bootstrap.template or REFERENCE_TEMPLATE
    bootstrap = render(template, reference_mapping(database, config.bootstrap.title))
    logger.info("Rendered bootstrap script (%d deferred values)", len(bootstrap.deferred))

    fleet = build_compute_fleet_descriptor(config, network, database, bootstrap)
    balancer = build_edge_balancer_descriptor(config, network, fleet)

    resources = order_descriptors([network, database, fleet, balancer])
    for position, descriptor in enumerate(resources):
        logger.debug("Resource %d: %s (%s)", position, descriptor.id, descriptor.kind)

    outputs = {
        OUTPUT_EDGE_ADDRESS: OutputBinding(OUTPUT_EDGE_ADDRESS, balancer.dns_name, prefix="http://"),
        OUTPUT_DATABASE_ENDPOINT: OutputBinding(OUTPUT_DATABASE_ENDPOINT, database.endpoint),
    }
    if database.credential_reference is not None:
        outputs[OUTPUT_CREDENTIAL_REFERENCE] = OutputBinding(
            OUTPUT_CREDENTIAL_REFERENCE, database.credential_reference,
        )

    logger.info("Assembled topology '%s': %s", config.name, " -> ".join(d.id for d in resources))
    return AssemblyResult(name=config.name, resources=resources, outputs=MappingProxyType(outputs))
