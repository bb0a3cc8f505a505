"""Tier provision descriptors.

Each builder takes its lower-tier inputs as explicit arguments and returns an
immutable descriptor. A builder asked to render before one of its inputs
exists fails with UnresolvedDependency; nothing is looked up from shared
state.

  network        <- partitioned subnets + access chain
  database       <- network (data subnets, data boundary)
  compute fleet  <- network, database (late-bound endpoint / secret), bootstrap
  edge balancer  <- network, compute fleet
"""

import logging

from internal.models.config import PLACEMENT_PRIVATE_WITH_EGRESS, PLACEMENT_PUBLIC, TopologyConfig
from internal.models.errors import InvalidTopologyConfig, UnresolvedDependency
from internal.models.types import (
    SUBNET_PRIVATE_ISOLATED, SUBNET_PUBLIC,
    ComputeFleetDescriptor, CredentialSpec, DatabaseDescriptor, EdgeBalancerDescriptor,
    FleetIdentity, HealthProbe, LateBoundValue, Listener, NetworkDescriptor,
    RenderedBootstrap, Tier,
)

logger = logging.getLogger(__name__)

NETWORK_ID = "network"
DATABASE_ID = "database"
FLEET_ID = "compute-fleet"
BALANCER_ID = "edge-balancer"

COMPUTE_SERVICE_PRINCIPAL = "ec2.amazonaws.com"


def build_network_descriptor(config: TopologyConfig, subnets: dict, boundaries: dict) -> NetworkDescriptor:
    """Network descriptor from partitioner output and the access chain."""
    if not subnets:
        raise UnresolvedDependency("network needs partitioned subnets")
    if not boundaries:
        raise UnresolvedDependency("network needs the access chain boundaries")

    ordered_subnets = tuple(subnets.values())
    nat_gateways = 0
    if config.compute.placement == PLACEMENT_PRIVATE_WITH_EGRESS and Tier.COMPUTE in boundaries:
        nat_gateways = config.network.az_count

    return NetworkDescriptor(
        id=NETWORK_ID,
        cidr=config.network.cidr,
        az_count=config.network.az_count,
        subnets=ordered_subnets,
        boundaries=tuple(boundaries[t] for t in sorted(boundaries)),
        internet_gateway=any(s.subnet_type == SUBNET_PUBLIC for s in ordered_subnets),
        nat_gateways=nat_gateways,
    )


def _placement(network: NetworkDescriptor, tier: Tier, owner: str):
    if network is None:
        raise UnresolvedDependency(f"{owner} needs the network descriptor")
    subnets = network.subnets_for(tier)
    if not subnets:
        raise UnresolvedDependency(f"{owner} needs {tier.label} subnets")
    boundary = network.boundary_for(tier)
    if boundary is None:
        raise UnresolvedDependency(f"{owner} needs the {tier.label} security boundary")
    return subnets, boundary


def build_database_descriptor(config: TopologyConfig, network: NetworkDescriptor) -> DatabaseDescriptor:
    """Single-instance database on the isolated data subnets."""
    subnets, boundary = _placement(network, Tier.DATA, DATABASE_ID)
    if any(s.subnet_type != SUBNET_PRIVATE_ISOLATED for s in subnets):
        raise InvalidTopologyConfig(["database placement must resolve to isolated data subnets"])

    db = config.database
    store = config.credentials.store
    credential_reference = LateBoundValue(DATABASE_ID, "Secret.Name") if store else None

    descriptor = DatabaseDescriptor(
        id=DATABASE_ID,
        engine=db.engine,
        engine_version=db.engine_version,
        instance_class=db.instance_class,
        subnet_ids=tuple(s.id for s in subnets),
        boundary_id=boundary.id,
        port=config.ports.data,
        allocated_storage_gb=db.allocated_storage_gb,
        max_allocated_storage_gb=db.max_allocated_storage_gb,
        database_name=db.database_name,
        credentials=CredentialSpec(username=db.master_username, store=store),
        endpoint=LateBoundValue(DATABASE_ID, "Endpoint.Address"),
        credential_reference=credential_reference,
        multi_az=db.multi_az,
        deletion_protection=db.deletion_protection,
        deletion_policy=db.deletion_policy,
        depends_on=(network.id,),
    )
    if descriptor.destroys_data_on_teardown:
        logger.warning(
            "Database '%s' uses deletion policy 'destroy': teardown deletes its data",
            descriptor.id,
        )
    return descriptor


def build_compute_fleet_descriptor(
    config: TopologyConfig,
    network: NetworkDescriptor,
    database: DatabaseDescriptor,
    bootstrap: RenderedBootstrap,
) -> ComputeFleetDescriptor:
    """Fixed-size fleet running the rendered bootstrap script."""
    subnets, boundary = _placement(network, Tier.COMPUTE, FLEET_ID)
    if database is None:
        raise UnresolvedDependency(f"{FLEET_ID} needs the database descriptor")
    if bootstrap is None:
        raise UnresolvedDependency(f"{FLEET_ID} needs a rendered bootstrap script")

    cp = config.compute
    secret_read = ()
    if cp.grant_secret_read and database.credential_reference is not None:
        secret_read = (database.credential_reference,)

    return ComputeFleetDescriptor(
        id=FLEET_ID,
        instance_type=cp.instance_type,
        machine_image=cp.machine_image,
        cpu_arch=cp.cpu_arch,
        subnet_ids=tuple(s.id for s in subnets),
        subnet_policy=cp.placement,
        associate_public_address=cp.placement == PLACEMENT_PUBLIC,
        boundary_id=boundary.id,
        min_size=cp.min_size,
        max_size=cp.max_size,
        desired_capacity=cp.desired_capacity,
        identity=FleetIdentity(
            service_principal=COMPUTE_SERVICE_PRINCIPAL,
            managed_policies=tuple(cp.managed_policies),
            secret_read=secret_read,
        ),
        bootstrap=bootstrap,
        depends_on=(network.id, database.id),
    )


def build_edge_balancer_descriptor(
    config: TopologyConfig,
    network: NetworkDescriptor,
    fleet: ComputeFleetDescriptor,
) -> EdgeBalancerDescriptor:
    """Internet-facing balancer forwarding the public port to the fleet."""
    subnets, boundary = _placement(network, Tier.EDGE, BALANCER_ID)
    if fleet is None:
        raise UnresolvedDependency(f"{BALANCER_ID} needs the compute fleet descriptor")

    ed = config.edge
    return EdgeBalancerDescriptor(
        id=BALANCER_ID,
        subnet_ids=tuple(s.id for s in subnets),
        boundary_id=boundary.id,
        listener=Listener(port=config.ports.edge),
        target_fleet=fleet.id,
        target_port=config.ports.compute,
        health_probe=HealthProbe(
            path=ed.health_check_path,
            interval_seconds=ed.health_check_interval_seconds,
            timeout_seconds=ed.health_check_timeout_seconds,
            healthy_threshold=ed.healthy_threshold,
            unhealthy_threshold=ed.unhealthy_threshold,
        ),
        dns_name=LateBoundValue(BALANCER_ID, "DNSName"),
        depends_on=(network.id,),
    )
