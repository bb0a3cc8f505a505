"""HTTP handlers for the topology control plane.

Endpoints:
  GET  /health                    Liveness
  GET  /api/tiers                 Tier registry
  GET  /api/tiers/<name>          One tier definition
  GET  /api/topology              Assemble the configured topology
  POST /api/topology/assemble     Assemble a posted topology (merged over the defaults)
  POST /api/topology/apply        Assemble, then hand the claims to the cluster
"""

import logging
import os

from flask import Blueprint, jsonify, request

from internal.assembly.assembler import assemble
from internal.k8s import client as k8s
from internal.k8s.claim_builder import build_resource_claims
from internal.models.config import TopologyConfig, merge_config
from internal.models.errors import TopologyError
from internal.policy.data import topology_store
from internal.policy.tiers import get_tier, list_tiers

logger = logging.getLogger(__name__)

api_bp = Blueprint("topology_api", __name__)


def _error(exc: TopologyError):
    logger.warning("Topology rejected (%s): %s", exc.code, exc)
    payload = {"error": str(exc), "code": exc.code}
    details = getattr(exc, "errors", None)
    if details:
        payload["details"] = details
    return jsonify(payload), 422


def _posted_config():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return None
    # Defaults, not the demo stack: posted topologies keep the retain policy.
    return TopologyConfig.from_dict(merge_config(TopologyConfig().to_dict(), body))


def _tier_json(t) -> dict:
    return {
        "name": t.name,
        "rank": int(t.tier),
        "default_port": t.default_port,
        "protocol": t.protocol,
        "public": t.public,
        "description": t.description,
    }


@api_bp.get("/health")
def health():
    return jsonify({"status": "ok", "service": "topology-controlplane"})


@api_bp.get("/api/tiers")
def get_tiers():
    return jsonify({"tiers": [_tier_json(t) for t in list_tiers()]}), 200


@api_bp.get("/api/tiers/<name>")
def get_tier_by_name(name: str):
    tier = get_tier(name)
    if tier is None:
        return jsonify({"error": f"Unknown tier: {name}"}), 404
    return jsonify(_tier_json(tier)), 200


@api_bp.get("/api/topology")
def get_topology():
    """Assemble the topology declared in the configuration file."""
    try:
        result = assemble(topology_store.config())
    except TopologyError as exc:
        return _error(exc)
    except OSError as exc:
        logger.error("Cannot read topology configuration: %s", exc)
        return jsonify({"error": f"Cannot read topology configuration: {exc}"}), 500
    return jsonify(result.to_dict()), 200


@api_bp.post("/api/topology/assemble")
def assemble_topology():
    try:
        config = _posted_config()
        if config is None:
            return jsonify({"error": "Request body must be a JSON object"}), 400
        result = assemble(config)
    except TopologyError as exc:
        return _error(exc)
    return jsonify(result.to_dict()), 200


@api_bp.post("/api/topology/apply")
def apply_topology():
    """Assemble and apply claims in dependency order. All-or-nothing on validation."""
    try:
        config = _posted_config()
        if config is None:
            return jsonify({"error": "Request body must be a JSON object"}), 400
        result = assemble(config)
    except TopologyError as exc:
        return _error(exc)

    namespace = os.environ.get("K8S_NAMESPACE", "default")
    claims = build_resource_claims(result, namespace=namespace, region=config.region)
    try:
        applied = k8s.apply_resource_set(claims)
    except k8s.HandOffError as exc:
        logger.error("Claim hand-off failed: %s", exc)
        return jsonify({"error": str(exc), "order": result.order, "claims": exc.applied}), 503

    return jsonify({
        "status": "applied",
        "order": result.order,
        "claims": applied,
        "outputs": result.outputs_surface(),
        "pendingOutputs": result.pending_outputs(),
    }), 202
