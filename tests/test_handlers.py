"""Tests for the control plane HTTP API."""

import os
import sys

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ForbiddenError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, PROJECT_ROOT)
sys.path.insert(0, os.path.join(PROJECT_ROOT, "cmd", "controlplane"))

from main import create_app

from internal.k8s import client as k8s
from internal.policy.data import topology_store

REFERENCE_YAML = os.path.join(PROJECT_ROOT, "config", "topology.yaml")


class _FakeResource:
    def __init__(self, log):
        self.log = log

    def server_side_apply(self, body, namespace, field_manager):
        self.log.append(body["kind"])
        return type("Applied", (), {"to_dict": lambda _self: body})()


class _FakeDynamicClient:
    def __init__(self):
        self.log = []
        resource = _FakeResource(self.log)
        self.resources = type("Resources", (), {"get": lambda _self, api_version, kind: resource})()


@pytest.fixture
def client():
    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def reference_store(monkeypatch):
    monkeypatch.setattr(topology_store, "path", REFERENCE_YAML)
    monkeypatch.setattr(topology_store, "_cache", None)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok", "service": "topology-controlplane"}


def test_tiers(client):
    resp = client.get("/api/tiers")
    assert resp.status_code == 200
    tiers = resp.get_json()["tiers"]
    assert [t["name"] for t in tiers] == ["edge", "compute", "data"]
    assert [t["default_port"] for t in tiers] == [80, 80, 3306]


def test_configured_topology(client, reference_store):
    resp = client.get("/api/topology")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["name"] == "ThreeTierStack"
    assert data["order"] == ["network", "database", "compute-fleet", "edge-balancer"]
    assert data["outputs"] == {}
    assert data["pendingOutputs"]["edgeAddress"] == "${edge-balancer.DNSName}"


def test_missing_configuration_file(client, monkeypatch, tmp_path):
    monkeypatch.setattr(topology_store, "path", str(tmp_path / "absent.yaml"))
    monkeypatch.setattr(topology_store, "_cache", None)
    resp = client.get("/api/topology")
    assert resp.status_code == 500


def test_assemble_reference_with_empty_overrides(client):
    resp = client.post("/api/topology/assemble", json={})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["order"] == ["network", "database", "compute-fleet", "edge-balancer"]
    assert sorted(data["lateBound"]) == [
        "${database.Endpoint.Address}",
        "${database.Secret.Name}",
        "${edge-balancer.DNSName}",
    ]


def test_assemble_with_overrides(client):
    resp = client.post("/api/topology/assemble", json={"name": "staging", "network": {"cidr": "10.20.0.0/16"}})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["name"] == "staging"
    assert data["resources"][0]["cidr"] == "10.20.0.0/16"


def test_assemble_edge_and_data_only_is_invalid_chain(client):
    resp = client.post("/api/topology/assemble", json={"network": {"tiers": ["edge", "data"]}})
    assert resp.status_code == 422
    assert resp.get_json()["code"] == "invalid_chain"


def test_assemble_unknown_key_reports_details(client):
    resp = client.post("/api/topology/assemble", json={"autoscaling": True})
    assert resp.status_code == 422
    data = resp.get_json()
    assert data["code"] == "invalid_config"
    assert any("autoscaling" in e for e in data["details"])


def test_assemble_requires_json_object(client):
    assert client.post("/api/topology/assemble", data="not json").status_code == 400
    assert client.post("/api/topology/assemble", json=["edge"]).status_code == 400


def test_apply_without_cluster(client, monkeypatch):
    monkeypatch.setattr(k8s, "_dynamic_client", None)
    resp = client.post("/api/topology/apply", json={})
    assert resp.status_code == 503
    assert resp.get_json()["order"][0] == "network"


def test_apply_invalid_topology_applies_nothing(client, monkeypatch):
    fake = _FakeDynamicClient()
    monkeypatch.setattr(k8s, "_dynamic_client", fake)
    resp = client.post("/api/topology/apply", json={"network": {"cidr": "10.0.0.0/24"}})
    assert resp.status_code == 422
    assert resp.get_json()["code"] == "capacity_exceeded"
    assert fake.log == []


def test_apply_hands_off_claims(client, monkeypatch):
    fake = _FakeDynamicClient()
    monkeypatch.setattr(k8s, "_dynamic_client", fake)
    monkeypatch.setenv("K8S_NAMESPACE", "platform")

    resp = client.post("/api/topology/apply", json={})
    assert resp.status_code == 202
    data = resp.get_json()
    assert data["status"] == "applied"
    assert [c["kind"] for c in data["claims"]] == [
        "NetworkClaim", "DatabaseInstanceClaim", "ComputeFleetClaim", "LoadBalancerClaim",
    ]
    assert all(c["namespace"] == "platform" for c in data["claims"])
    assert data["outputs"] == {}
    assert data["pendingOutputs"]["databaseEndpoint"] == "${database.Endpoint.Address}"


def test_tier_lookup(client):
    resp = client.get("/api/tiers/Data")
    assert resp.status_code == 200
    assert resp.get_json()["default_port"] == 3306
    assert client.get("/api/tiers/cache").status_code == 404


def test_posted_topology_retains_database_by_default(client):
    resp = client.post("/api/topology/assemble", json={"name": "prod-shop"})
    assert resp.status_code == 200
    database = resp.get_json()["resources"][1]
    assert database["kind"] == "database"
    assert database["deletion_policy"] == "retain"


def test_posted_topology_can_opt_into_destroy(client):
    resp = client.post("/api/topology/assemble", json={"database": {"deletion_policy": "destroy"}})
    assert resp.status_code == 200
    assert resp.get_json()["resources"][1]["deletion_policy"] == "destroy"


@pytest.mark.parametrize("body", [
    {"edge": {"health_check_interval_seconds": "30"}},
    {"database": {"max_allocated_storage_gb": "100"}},
    {"network": {"tiers": [{"tier": "edge", "cidr_mask": "24"}, "compute", "data"]}},
    {"edge": {"health_check_path": 5}},
])
def test_wrongly_typed_values_are_rejected(client, body):
    resp = client.post("/api/topology/assemble", json=body)
    assert resp.status_code == 422
    assert resp.get_json()["code"] == "invalid_config"


def test_apply_rejected_mid_set_reports_applied_prefix(client, monkeypatch):
    fake = _FakeDynamicClient()
    original = fake.resources.get

    def _get(api_version, kind):
        resource = original(api_version, kind)
        if kind == "ComputeFleetClaim":
            def _refuse(body, namespace, field_manager):
                raise ForbiddenError(ApiException(status=403, reason="Forbidden"))
            resource = type("Refusing", (), {"server_side_apply": staticmethod(_refuse)})()
        return resource

    fake.resources = type("Resources", (), {"get": staticmethod(_get)})()
    monkeypatch.setattr(k8s, "_dynamic_client", fake)

    resp = client.post("/api/topology/apply", json={})
    assert resp.status_code == 503
    data = resp.get_json()
    assert [c["kind"] for c in data["claims"]] == ["NetworkClaim", "DatabaseInstanceClaim"]
    assert "ComputeFleetClaim" in data["error"]
    assert data["order"][2] == "compute-fleet"
