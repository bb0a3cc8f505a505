"""Error taxonomy for topology synthesis.

Every failure here is a local validation failure: the declared topology is
invalid. Nothing is retried and assembly never emits a partial resource set.
"""


class TopologyError(Exception):
    """Base class for all topology synthesis failures."""
    code = "topology_error"


class CapacityExceeded(TopologyError):
    """The address space cannot hold the requested subnets."""
    code = "capacity_exceeded"


class InvalidChain(TopologyError):
    """A security-boundary rule references a non-adjacent or outward source."""
    code = "invalid_chain"


class UnresolvedDependency(TopologyError):
    """A descriptor was rendered before the lower-tier input it references."""
    code = "unresolved_dependency"


class UnknownPlaceholder(TopologyError):
    """A bootstrap template references a name absent from the mapping."""
    code = "unknown_placeholder"

    def __init__(self, names):
        self.names = tuple(sorted(names))
        super().__init__(f"Unknown bootstrap placeholder(s): {', '.join(self.names)}")


class CycleDetected(TopologyError):
    """The descriptor reference graph is not acyclic."""
    code = "cycle_detected"

    def __init__(self, resource_ids):
        self.resource_ids = tuple(sorted(resource_ids))
        super().__init__(
            f"Descriptor graph contains a cycle among: {', '.join(self.resource_ids)}"
        )


class InvalidTopologyConfig(TopologyError):
    """The topology declaration failed validation."""
    code = "invalid_config"

    def __init__(self, errors: list):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class LateBindingError(TopologyError):
    """A late-bound value was resolved twice or read before resolution."""
    code = "late_binding"
