"""Hands topology claims to the cluster, where Crossplane provisions them.

Claims go in apply order. Server-side apply is tried first; clients that
lack it fall back to replace, or create when the claim does not exist yet.
The engine fills in late-bound values itself, nothing here reads them back.
"""

import logging

from kubernetes import client as k8s_client, config as k8s_config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError, NotFoundError, ResourceNotFoundError

logger = logging.getLogger(__name__)

FIELD_MANAGER = "topology-controlplane"

_api_client = None
_dynamic_client = None


def _load_cluster_config() -> str | None:
    """Load cluster credentials, preferring the in-cluster service account."""
    loaders = (
        ("in-cluster service account", k8s_config.load_incluster_config),
        ("kubeconfig", k8s_config.load_kube_config),
    )
    for source, load in loaders:
        try:
            load()
        except k8s_config.ConfigException:
            continue
        return source
    return None


def init_client() -> bool:
    """Connect to the cluster. Returns False when no credentials are found."""
    global _api_client, _dynamic_client

    source = _load_cluster_config()
    if source is None:
        logger.warning("No cluster credentials found; topology claims cannot be applied")
        return False

    logger.info("Kubernetes configuration loaded from %s", source)
    _api_client = k8s_client.ApiClient()
    _dynamic_client = DynamicClient(_api_client)
    return True


def is_available() -> bool:
    return _dynamic_client is not None


def _claim_resource(manifest: dict):
    api_version, kind = manifest["apiVersion"], manifest["kind"]
    if _dynamic_client is None:
        raise RuntimeError(f"Cannot apply {kind}: Kubernetes is not reachable.")
    try:
        return _dynamic_client.resources.get(api_version=api_version, kind=kind)
    except ResourceNotFoundError as exc:
        logger.error("Claim type %s/%s not served by the cluster: %s", api_version, kind, exc)
        raise RuntimeError(f"Cannot apply {kind}: the {api_version} CRD is not installed.") from exc


def _replace_or_create(resource, manifest: dict):
    meta = manifest["metadata"]
    try:
        current = resource.get(name=meta["name"], namespace=meta["namespace"])
    except NotFoundError:
        return resource.create(body=manifest, namespace=meta["namespace"])
    meta["resourceVersion"] = current.metadata.resourceVersion
    return resource.replace(body=manifest, namespace=meta["namespace"])


def apply_claim(manifest: dict) -> dict:
    """Apply a single claim and return the stored object.

    Raises:
        RuntimeError: The cluster is unreachable or the claim's CRD is missing.
    """
    resource = _claim_resource(manifest)
    ssa = getattr(resource, "server_side_apply", None)
    if ssa is None:
        stored = _replace_or_create(resource, manifest)
    else:
        stored = ssa(
            body=manifest,
            namespace=manifest["metadata"]["namespace"],
            field_manager=FIELD_MANAGER,
        )
    return stored.to_dict()


class HandOffError(RuntimeError):
    """A claim was refused part way through an ordered hand-off."""

    def __init__(self, message: str, applied: list):
        super().__init__(message)
        self.applied = applied


def apply_resource_set(manifests: list) -> list:
    """Apply claims strictly in the given order, stopping at the first failure.

    A consumer is never handed over before its producer.

    Raises:
        HandOffError: The cluster rejected a claim. `applied` lists the
            claims handed over before it.
    """
    applied = []
    for manifest in manifests:
        meta = manifest["metadata"]
        try:
            apply_claim(manifest)
        except (RuntimeError, DynamicApiError) as exc:
            logger.error("Hand-off stopped at %s %s/%s: %s",
                         manifest["kind"], meta["namespace"], meta["name"], exc)
            raise HandOffError(f"{manifest['kind']} {meta['name']} was not applied: {exc}", applied) from exc
        logger.info("Applied %s %s/%s", manifest["kind"], meta["namespace"], meta["name"])
        applied.append({"kind": manifest["kind"], "namespace": meta["namespace"], "name": meta["name"]})
    return applied
