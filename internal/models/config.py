"""Declarative topology configuration.

A TopologyConfig is the single explicit input to assembly. It is parsed from
a plain dict (the YAML document or an API body) and validated before any
descriptor is built.
"""

import ipaddress
from dataclasses import dataclass, fields, replace
from typing import Optional

from internal.models.errors import InvalidTopologyConfig
from internal.models.types import (
    DELETION_DESTROY, DELETION_RETAIN, VALID_DELETION_POLICIES, Tier, to_plain,
)


PLACEMENT_PUBLIC = "public"
PLACEMENT_PRIVATE_WITH_EGRESS = "private_with_egress"
VALID_PLACEMENTS = (PLACEMENT_PUBLIC, PLACEMENT_PRIVATE_WITH_EGRESS)

VALID_ENGINES = ("mysql", "postgres", "mariadb")


@dataclass(frozen=True)
class TierLayout:
    """One tier's subnet request. `public=None` defers to the tier default."""
    tier: Tier
    public: Optional[bool] = None
    cidr_mask: Optional[int] = None


@dataclass(frozen=True)
class NetworkConfig:
    cidr: str = "10.0.0.0/16"
    az_count: int = 2
    tiers: tuple = (
        TierLayout(Tier.EDGE, public=True, cidr_mask=24),
        TierLayout(Tier.COMPUTE, cidr_mask=24),
        TierLayout(Tier.DATA, public=False, cidr_mask=24),
    )


@dataclass(frozen=True)
class PortConfig:
    edge: int = 80
    compute: int = 80
    data: int = 3306

    def for_tier(self, tier: Tier) -> int:
        return getattr(self, tier.label)


@dataclass(frozen=True)
class DatabaseConfig:
    engine: str = "mysql"
    engine_version: str = "8.0.39"
    instance_class: str = "t3.micro"
    allocated_storage_gb: int = 20
    max_allocated_storage_gb: int = 100
    multi_az: bool = False
    deletion_policy: str = DELETION_RETAIN
    deletion_protection: bool = False
    database_name: str = "appdb"
    master_username: str = "admin"


@dataclass(frozen=True)
class ComputeConfig:
    instance_type: str = "t3.micro"
    machine_image: str = "amazon-linux-2023"
    cpu_arch: str = "x86_64"
    min_size: int = 2
    max_size: int = 2
    desired_capacity: int = 2
    # Public placement gives nodes addresses for egress and skips NAT gateways.
    placement: str = PLACEMENT_PUBLIC
    managed_policies: tuple = ("AmazonSSMManagedInstanceCore",)
    grant_secret_read: bool = True


@dataclass(frozen=True)
class EdgeConfig:
    health_check_path: str = "/"
    health_check_interval_seconds: int = 30
    health_check_timeout_seconds: int = 5
    healthy_threshold: int = 5
    unhealthy_threshold: int = 2


@dataclass(frozen=True)
class BootstrapConfig:
    template: Optional[str] = None
    title: str = "Three-tier demo"


@dataclass(frozen=True)
class CredentialsConfig:
    store: Optional[str] = "secretsmanager"


@dataclass(frozen=True)
class TopologyConfig:
    name: str = "three-tier"
    region: str = "ap-south-1"
    network: NetworkConfig = NetworkConfig()
    ports: PortConfig = PortConfig()
    database: DatabaseConfig = DatabaseConfig()
    compute: ComputeConfig = ComputeConfig()
    edge: EdgeConfig = EdgeConfig()
    bootstrap: BootstrapConfig = BootstrapConfig()
    credentials: CredentialsConfig = CredentialsConfig()

    @classmethod
    def from_dict(cls, data: dict) -> "TopologyConfig":
        """Parse a configuration document. Raises InvalidTopologyConfig."""
        errors = []
        if not isinstance(data, dict):
            raise InvalidTopologyConfig(["topology document must be a mapping"])

        sections = {
            "network": NetworkConfig,
            "ports": PortConfig,
            "database": DatabaseConfig,
            "compute": ComputeConfig,
            "edge": EdgeConfig,
            "bootstrap": BootstrapConfig,
            "credentials": CredentialsConfig,
        }
        kwargs = {}
        for key, value in data.items():
            if key in ("name", "region"):
                kwargs[key] = value
            elif key in sections:
                section = _parse_section(key, sections[key], value or {}, errors)
                if section is not None:
                    kwargs[key] = section
            else:
                errors.append(f"unknown configuration key '{key}'")

        if errors:
            raise InvalidTopologyConfig(errors)
        config = cls(**kwargs)
        config.check()
        return config

    def to_dict(self) -> dict:
        return to_plain(self)

    def check(self) -> None:
        errors = self.validate()
        if errors:
            raise InvalidTopologyConfig(errors)

    def validate(self) -> list:
        """Return a list of validation errors (empty if valid)."""
        errors = []
        if not self.name or not isinstance(self.name, str):
            errors.append("name is required and must be a string")

        net = self.network
        try:
            root = ipaddress.ip_network(net.cidr, strict=True)
            if root.version != 4:
                errors.append("network.cidr must be an IPv4 block")
        except (TypeError, ValueError):
            errors.append(f"network.cidr '{net.cidr}' is not a valid network block")
        if not _is_int(net.az_count) or net.az_count < 1:
            errors.append("network.az_count must be an integer >= 1")
        if not net.tiers:
            errors.append("network.tiers must declare at least one tier")
        seen = set()
        for layout in net.tiers:
            if layout.tier in seen:
                errors.append(f"tier '{layout.tier.label}' is declared more than once")
            seen.add(layout.tier)
            if layout.public is not None and not isinstance(layout.public, bool):
                errors.append(f"tier '{layout.tier.label}' public must be true or false")
            if layout.cidr_mask is not None and not (
                    _is_int(layout.cidr_mask) and 0 < layout.cidr_mask <= 32):
                errors.append(f"tier '{layout.tier.label}' cidr_mask must be between 1 and 32")
            if layout.tier == Tier.EDGE and layout.public is False:
                errors.append("edge tier must be public")
            if layout.tier == Tier.DATA and layout.public:
                errors.append("data tier must be isolated (public: false)")
            if layout.tier == Tier.COMPUTE and layout.public is not None:
                wants_public = self.compute.placement == PLACEMENT_PUBLIC
                if layout.public != wants_public:
                    errors.append(
                        f"compute tier public={layout.public} conflicts with "
                        f"compute.placement '{self.compute.placement}'"
                    )

        for tier in Tier:
            port = self.ports.for_tier(tier)
            if not _is_int(port) or not 1 <= port <= 65535:
                errors.append(f"ports.{tier.label} must be an integer between 1 and 65535")

        db = self.database
        if db.engine not in VALID_ENGINES:
            errors.append(f"database.engine must be one of {VALID_ENGINES}")
        if db.deletion_policy not in VALID_DELETION_POLICIES:
            errors.append(f"database.deletion_policy must be one of {VALID_DELETION_POLICIES}")
        if not _is_int(db.allocated_storage_gb) or db.allocated_storage_gb < 20:
            errors.append("database.allocated_storage_gb must be an integer >= 20")
        elif not _is_int(db.max_allocated_storage_gb):
            errors.append("database.max_allocated_storage_gb must be an integer")
        elif db.max_allocated_storage_gb < db.allocated_storage_gb:
            errors.append("database.max_allocated_storage_gb must be >= allocated_storage_gb")
        if db.multi_az:
            errors.append("database.multi_az is not supported; the data tier is a single instance")
        if not db.master_username:
            errors.append("database.master_username is required")

        cp = self.compute
        if cp.placement not in VALID_PLACEMENTS:
            errors.append(f"compute.placement must be one of {VALID_PLACEMENTS}")
        if not (isinstance(cp.min_size, int) and isinstance(cp.max_size, int)
                and isinstance(cp.desired_capacity, int)):
            errors.append("compute fleet sizes must be integers")
        elif not 0 <= cp.min_size <= cp.desired_capacity <= cp.max_size:
            errors.append("compute fleet sizes must satisfy 0 <= min <= desired <= max")

        ed = self.edge
        if not isinstance(ed.health_check_path, str) or not ed.health_check_path.startswith("/"):
            errors.append("edge.health_check_path must be a string starting with '/'")
        timings = (ed.health_check_interval_seconds, ed.health_check_timeout_seconds)
        if not all(_is_int(v) for v in timings):
            errors.append("edge health check interval and timeout must be integers")
        else:
            if not 5 <= ed.health_check_interval_seconds <= 300:
                errors.append("edge.health_check_interval_seconds must be between 5 and 300")
            if ed.health_check_timeout_seconds >= ed.health_check_interval_seconds:
                errors.append("edge.health_check_timeout_seconds must be below the interval")
        thresholds = (ed.healthy_threshold, ed.unhealthy_threshold)
        if not all(_is_int(v) and v >= 2 for v in thresholds):
            errors.append("edge health thresholds must be integers >= 2")

        return errors


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_section(key: str, section_cls, raw, errors: list):
    if not isinstance(raw, dict):
        errors.append(f"{key} must be a mapping")
        return None
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(raw) - known)
    for name in unknown:
        errors.append(f"unknown key '{key}.{name}'")
    values = {k: v for k, v in raw.items() if k in known}

    if section_cls is NetworkConfig and "tiers" in values:
        values["tiers"] = _parse_tiers(values["tiers"], errors)
    if section_cls is ComputeConfig and "managed_policies" in values:
        values["managed_policies"] = tuple(values["managed_policies"] or ())
    return section_cls(**values)


def _parse_tiers(raw, errors: list) -> tuple:
    if not isinstance(raw, list):
        errors.append("network.tiers must be a list")
        return ()
    layouts = []
    for item in raw:
        if isinstance(item, str):
            item = {"tier": item}
        if not isinstance(item, dict) or "tier" not in item:
            errors.append("each network.tiers entry needs a 'tier' name")
            continue
        try:
            tier = Tier.parse(item["tier"])
        except ValueError as exc:
            errors.append(str(exc))
            continue
        layouts.append(TierLayout(tier=tier, public=item.get("public"), cidr_mask=item.get("cidr_mask")))
    return tuple(layouts)


def merge_config(base: dict, overrides: dict) -> dict:
    """Deep-merge `overrides` into a copy of `base`. Lists are replaced."""
    merged = dict(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


# The demo stack. Teardown destroys the database: a
# deliberate non-default for a throwaway environment.
REFERENCE_TOPOLOGY = replace(
    TopologyConfig(name="ThreeTierStack"),
    database=DatabaseConfig(deletion_policy=DELETION_DESTROY),
)
