"""Data types for the three-tier topology model.

Descriptors are immutable intent: they are built once per assembly run and
never mutated. Values a provider only produces after creating a resource
(endpoints, DNS names, secret names) are carried as LateBoundValue
references, never as raw strings.
"""

from dataclasses import dataclass, fields, is_dataclass
from enum import IntEnum
from typing import Optional, Union

from internal.models.errors import LateBindingError


PUBLIC_CIDR = "0.0.0.0/0"

# Subnet route classes
SUBNET_PUBLIC = "public"
SUBNET_PRIVATE_WITH_EGRESS = "private_with_egress"
SUBNET_PRIVATE_ISOLATED = "private_isolated"

# Descriptor kinds
KIND_NETWORK = "network"
KIND_DATABASE = "database"
KIND_COMPUTE_FLEET = "compute_fleet"
KIND_EDGE_BALANCER = "edge_balancer"

DELETION_RETAIN = "retain"
DELETION_DESTROY = "destroy"
VALID_DELETION_POLICIES = (DELETION_RETAIN, DELETION_DESTROY)

CREDENTIALS_GENERATE_AND_STORE = "generate-and-store"


class Tier(IntEnum):
    """Logical layer of the topology. Traffic only flows to the next tier up."""
    EDGE = 1
    COMPUTE = 2
    DATA = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "Tier":
        if isinstance(value, Tier):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(
                f"unknown tier '{value}', expected one of {[t.label for t in cls]}"
            ) from None


@dataclass(frozen=True)
class AddressSpace:
    """Root CIDR block split across availability zones."""
    cidr: str
    az_count: int


@dataclass(frozen=True)
class Subnet:
    tier: Tier
    az_index: int
    cidr: str
    subnet_type: str

    @property
    def id(self) -> str:
        return f"{self.tier.label}-az{self.az_index + 1}"

    @property
    def routes_to_internet_gateway(self) -> bool:
        return self.subnet_type == SUBNET_PUBLIC


@dataclass(frozen=True)
class AllowRule:
    """Ingress rule keyed to a source boundary, or to a CIDR for the edge only."""
    port: int
    protocol: str = "tcp"
    source_boundary: Optional[str] = None
    source_cidr: Optional[str] = None
    description: str = ""

    @property
    def is_public(self) -> bool:
        return self.source_cidr is not None


@dataclass(frozen=True)
class SecurityBoundary:
    tier: Tier
    rules: tuple = ()
    allow_all_outbound: bool = True

    @property
    def id(self) -> str:
        return f"{self.tier.label}-boundary"


class LateBoundValue:
    """Reference to a value known only after `producer` is provisioned.

    Two states: unresolved (only the interpolation token is known) and
    resolved. Resolution happens exactly once, outside assembly.
    """

    __slots__ = ("producer", "attribute", "_value", "_resolved")

    def __init__(self, producer: str, attribute: str):
        self.producer = producer
        self.attribute = attribute
        self._value = None
        self._resolved = False

    @property
    def token(self) -> str:
        return "${" + f"{self.producer}.{self.attribute}" + "}"

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def value(self) -> str:
        if not self._resolved:
            raise LateBindingError(f"{self.token} has not been resolved yet")
        return self._value

    def resolve(self, value: str) -> None:
        if self._resolved:
            raise LateBindingError(f"{self.token} is already resolved")
        self._value = value
        self._resolved = True

    def render(self) -> str:
        """Resolved value, or the interpolation token while unresolved."""
        return self._value if self._resolved else self.token

    def to_dict(self) -> dict:
        data = {"producer": self.producer, "attribute": self.attribute, "token": self.token}
        if self._resolved:
            data["value"] = self._value
        return data

    def __eq__(self, other):
        if not isinstance(other, LateBoundValue):
            return NotImplemented
        return (self.producer, self.attribute) == (other.producer, other.attribute)

    def __hash__(self):
        return hash((self.producer, self.attribute))

    def __repr__(self):
        state = f"resolved={self._value!r}" if self._resolved else "unresolved"
        return f"LateBoundValue({self.producer}.{self.attribute}, {state})"


@dataclass(frozen=True)
class OutputBinding:
    """Named output: a late-bound reference or a literal, with an optional prefix."""
    name: str
    source: Union[LateBoundValue, str]
    prefix: str = ""

    @property
    def late_bound(self) -> bool:
        return isinstance(self.source, LateBoundValue)

    @property
    def resolved(self) -> bool:
        return not self.late_bound or self.source.resolved

    def render(self) -> str:
        if isinstance(self.source, LateBoundValue):
            return f"{self.prefix}{self.source.render()}"
        return f"{self.prefix}{self.source}"


# ── Descriptors ──────────────────────────────────────────────────────────────

class _Descriptor:
    """Reference helpers shared by every descriptor kind."""

    def consumes(self) -> tuple:
        """Late-bound values this descriptor needs from other descriptors."""
        return ()

    def produces(self) -> tuple:
        """Late-bound values the provider fills in after creating this descriptor."""
        return ()

    def references(self) -> frozenset:
        """Ids of every descriptor this one must be scheduled after."""
        refs = set(self.depends_on)
        refs.update(v.producer for v in self.consumes())
        refs.discard(self.id)
        return frozenset(refs)

    def to_dict(self) -> dict:
        data = to_plain(self)
        data["kind"] = self.kind
        data["references"] = sorted(self.references())
        return data


@dataclass(frozen=True)
class NetworkDescriptor(_Descriptor):
    id: str
    cidr: str
    az_count: int
    subnets: tuple
    boundaries: tuple
    internet_gateway: bool = True
    nat_gateways: int = 0
    depends_on: tuple = ()

    kind = KIND_NETWORK

    def subnets_for(self, tier: Tier) -> tuple:
        return tuple(s for s in self.subnets if s.tier == tier)

    def boundary_for(self, tier: Tier) -> Optional[SecurityBoundary]:
        for boundary in self.boundaries:
            if boundary.tier == tier:
                return boundary
        return None


@dataclass(frozen=True)
class CredentialSpec:
    username: str
    strategy: str = CREDENTIALS_GENERATE_AND_STORE
    store: Optional[str] = None


@dataclass(frozen=True)
class DatabaseDescriptor(_Descriptor):
    id: str
    engine: str
    engine_version: str
    instance_class: str
    subnet_ids: tuple
    boundary_id: str
    port: int
    allocated_storage_gb: int
    max_allocated_storage_gb: int
    database_name: str
    credentials: CredentialSpec
    endpoint: LateBoundValue
    credential_reference: Optional[LateBoundValue] = None
    multi_az: bool = False
    publicly_accessible: bool = False
    deletion_protection: bool = False
    deletion_policy: str = DELETION_RETAIN
    depends_on: tuple = ()

    kind = KIND_DATABASE
    tier = Tier.DATA

    @property
    def destroys_data_on_teardown(self) -> bool:
        return self.deletion_policy == DELETION_DESTROY

    def produces(self) -> tuple:
        if self.credential_reference is None:
            return (self.endpoint,)
        return (self.endpoint, self.credential_reference)


@dataclass(frozen=True)
class RenderedBootstrap:
    """Bootstrap script text plus the late-bound values it still interpolates."""
    script: str
    deferred: tuple = ()

    @property
    def needs_engine_interpolation(self) -> bool:
        return bool(self.deferred)


@dataclass(frozen=True)
class FleetIdentity:
    service_principal: str
    managed_policies: tuple = ()
    secret_read: tuple = ()


@dataclass(frozen=True)
class ComputeFleetDescriptor(_Descriptor):
    id: str
    instance_type: str
    machine_image: str
    cpu_arch: str
    subnet_ids: tuple
    subnet_policy: str
    associate_public_address: bool
    boundary_id: str
    min_size: int
    max_size: int
    desired_capacity: int
    identity: FleetIdentity
    bootstrap: RenderedBootstrap
    depends_on: tuple = ()

    kind = KIND_COMPUTE_FLEET
    tier = Tier.COMPUTE

    @property
    def fixed_size(self) -> bool:
        return self.min_size == self.max_size == self.desired_capacity

    def consumes(self) -> tuple:
        seen = []
        for value in tuple(self.identity.secret_read) + tuple(self.bootstrap.deferred):
            if value not in seen:
                seen.append(value)
        return tuple(seen)


@dataclass(frozen=True)
class HealthProbe:
    path: str = "/"
    interval_seconds: int = 30
    timeout_seconds: int = 5
    healthy_threshold: int = 5
    unhealthy_threshold: int = 2


@dataclass(frozen=True)
class Listener:
    port: int
    protocol: str = "HTTP"
    # Ingress comes from the edge boundary rule, not from the listener itself.
    open_to_internet: bool = False


@dataclass(frozen=True)
class EdgeBalancerDescriptor(_Descriptor):
    id: str
    subnet_ids: tuple
    boundary_id: str
    listener: Listener
    target_fleet: str
    target_port: int
    health_probe: HealthProbe
    dns_name: LateBoundValue
    internet_facing: bool = True
    depends_on: tuple = ()

    kind = KIND_EDGE_BALANCER
    tier = Tier.EDGE

    def references(self) -> frozenset:
        return super().references() | {self.target_fleet}

    def produces(self) -> tuple:
        return (self.dns_name,)


def to_plain(value):
    """Convert model objects into JSON-serializable structures."""
    if isinstance(value, LateBoundValue):
        return value.to_dict()
    if isinstance(value, Tier):
        return value.label
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    return value
