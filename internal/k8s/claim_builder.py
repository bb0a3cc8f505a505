"""Render an assembled topology as Crossplane claims for the provisioning engine.

One claim per descriptor, emitted in apply order. Late-bound values become
`valueFrom` references to the producing claim's field, so the engine fills
them in after the producer is ready. Core code never sees the values.
"""

import json
import re
from dataclasses import fields, is_dataclass

from internal.models.types import (
    KIND_COMPUTE_FLEET, KIND_DATABASE, KIND_EDGE_BALANCER, KIND_NETWORK,
    LateBoundValue, RenderedBootstrap, Tier,
)

LABEL_PREFIX = "platform.example.org"

CLAIM_TYPES = {
    KIND_NETWORK: ("network.platform.example.org/v1alpha1", "NetworkClaim"),
    KIND_DATABASE: ("db.platform.example.org/v1alpha1", "DatabaseInstanceClaim"),
    KIND_COMPUTE_FLEET: ("compute.platform.example.org/v1alpha1", "ComputeFleetClaim"),
    KIND_EDGE_BALANCER: ("edge.platform.example.org/v1alpha1", "LoadBalancerClaim"),
}

_SKIPPED_FIELDS = {"id", "depends_on"}
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9]+")


def _k8s_name(raw: str) -> str:
    return _INVALID_NAME_CHARS.sub("-", raw.lower()).strip("-")[:63]


def claim_name(topology: str, resource_id: str) -> str:
    """Kubernetes-safe claim name for a descriptor of `topology`."""
    return _k8s_name(f"{topology}-{resource_id}")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _render(value, names: dict):
    if isinstance(value, LateBoundValue):
        return {"valueFrom": {"resource": names[value.producer], "field": value.attribute}}
    if isinstance(value, RenderedBootstrap):
        return {
            "script": value.script,
            "deferredValues": [
                {"token": v.token, **_render(v, names)} for v in value.deferred
            ],
        }
    if isinstance(value, Tier):
        return value.label
    if is_dataclass(value) and not isinstance(value, type):
        return {
            _camel(f.name): _render(getattr(value, f.name), names)
            for f in fields(value)
        }
    if isinstance(value, (list, tuple)):
        return [_render(v, names) for v in value]
    return value


def build_claim(descriptor, topology: str, namespace: str, position: int,
                names: dict, provider: str = "aws", region: str = "") -> dict:
    """Build the claim manifest for a single descriptor."""
    api_version, kind = CLAIM_TYPES[descriptor.kind]
    name = names[descriptor.id]
    group = api_version.split("/")[0]

    params = {
        _camel(f.name): _render(getattr(descriptor, f.name), names)
        for f in fields(descriptor)
        if f.name not in _SKIPPED_FIELDS
    }
    params["provider"] = provider
    params["region"] = region

    labels = {
        f"{LABEL_PREFIX}/topology": _k8s_name(topology),
        f"{LABEL_PREFIX}/resource": descriptor.id,
        f"{LABEL_PREFIX}/kind": descriptor.kind.replace("_", "-"),
    }
    tier = getattr(descriptor, "tier", None)
    if isinstance(tier, Tier):
        labels[f"{LABEL_PREFIX}/tier"] = tier.label

    manifest = {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": labels,
            "annotations": {
                f"{LABEL_PREFIX}/apply-order": str(position),
                f"{LABEL_PREFIX}/depends-on": json.dumps(
                    sorted(names[r] for r in descriptor.references()),
                    separators=(",", ":"),
                ),
            },
        },
        "spec": {
            "parameters": params,
            "compositionSelector": {
                "matchLabels": {
                    f"{group}/provider": provider,
                    f"{group}/class": getattr(descriptor, "engine", descriptor.kind),
                },
            },
        },
    }
    if descriptor.kind == KIND_DATABASE:
        manifest["spec"]["writeConnectionSecretToRef"] = {"name": f"{name}-conn"}
    return manifest


def build_resource_claims(result, namespace: str = "default", provider: str = "aws",
                          region: str = "") -> list:
    """Claims for every resource of an AssemblyResult, in apply order."""
    names = {d.id: claim_name(result.name, d.id) for d in result.resources}
    return [
        build_claim(d, result.name, namespace, position, names, provider=provider, region=region)
        for position, d in enumerate(result.resources)
    ]
