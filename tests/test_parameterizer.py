"""Tests for the bootstrap parameterizer."""

import os
import sys

import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from internal.bootstrap.parameterizer import (
    REFERENCE_TEMPLATE, placeholders, reference_mapping, render,
)
from internal.models.errors import UnknownPlaceholder, UnresolvedDependency
from internal.models.types import LateBoundValue


def _endpoint() -> LateBoundValue:
    return LateBoundValue("database", "Endpoint.Address")


# ── Placeholders ─────────────────────────────────────────────────────────────

def test_placeholders_in_order_without_duplicates():
    assert placeholders("{{a}} {{ b }} {{a}}") == ["a", "b"]


def test_reference_template_placeholders():
    assert placeholders(REFERENCE_TEMPLATE) == ["title", "databaseEndpoint", "databasePort"]


def test_unknown_placeholder_fails_before_rendering():
    with pytest.raises(UnknownPlaceholder) as exc:
        render("echo {{databaseEndpoint}}", {"title": "x"})
    assert exc.value.names == ("databaseEndpoint",)
    assert exc.value.code == "unknown_placeholder"


def test_unused_mapping_entries_are_ignored():
    result = render("echo {{a}}", {"a": "1", "b": "2"})
    assert result.script == "echo 1"


# ── Rendering ────────────────────────────────────────────────────────────────

def test_literal_rendering_is_complete():
    result = render("echo {{name}}:{{port}}", {"name": "db", "port": "3306"})
    assert result.script == "echo db:3306"
    assert result.deferred == ()
    assert result.needs_engine_interpolation is False


def test_unresolved_value_is_deferred_to_engine():
    endpoint = _endpoint()
    result = render("echo {{databaseEndpoint}}", {"databaseEndpoint": endpoint})
    assert result.script == "echo ${database.Endpoint.Address}"
    assert result.deferred == (endpoint,)
    assert result.needs_engine_interpolation is True


def test_repeated_late_bound_value_is_deferred_once():
    endpoint = _endpoint()
    result = render("{{e}} {{e}}", {"e": endpoint})
    assert result.deferred == (endpoint,)


def test_resolved_value_is_substituted():
    endpoint = _endpoint()
    endpoint.resolve("db.internal.example")
    result = render("echo {{databaseEndpoint}}", {"databaseEndpoint": endpoint})
    assert result.script == "echo db.internal.example"
    assert result.deferred == ()


def test_eager_rendering_requires_resolved_values():
    with pytest.raises(UnresolvedDependency):
        render("echo {{e}}", {"e": _endpoint()}, eager=True)


def test_shell_interpolation_escaped_only_when_deferring():
    template = "echo ${HOME} {{e}}"
    deferred = render(template, {"e": _endpoint()})
    assert deferred.script == "echo ${!HOME} ${database.Endpoint.Address}"

    literal = render(template, {"e": "db"})
    assert literal.script == "echo ${HOME} db"


def test_rendering_is_deterministic():
    mapping = {"title": "demo", "databaseEndpoint": _endpoint(), "databasePort": "3306"}
    first = render(REFERENCE_TEMPLATE, mapping)
    second = render(REFERENCE_TEMPLATE, mapping)
    assert first.script == second.script
    assert first == second


# ── Reference template ───────────────────────────────────────────────────────

def test_reference_template_guards_install():
    assert "if ! rpm -q nginx" in REFERENCE_TEMPLATE
    assert REFERENCE_TEMPLATE.startswith("#!/bin/bash\nset -eux\n")
    assert "systemctl enable nginx" in REFERENCE_TEMPLATE


def test_reference_mapping_uses_database_reference():
    class _Db:
        endpoint = _endpoint()
        port = 3306

    mapping = reference_mapping(_Db(), "demo")
    assert mapping["databaseEndpoint"] == LateBoundValue("database", "Endpoint.Address")
    assert mapping["databasePort"] == "3306"
    assert mapping["title"] == "demo"


def test_reference_mapping_requires_database():
    with pytest.raises(UnresolvedDependency):
        reference_mapping(None, "demo")


def test_reference_template_renders_endpoint_and_port():
    mapping = {"title": "demo", "databaseEndpoint": _endpoint(), "databasePort": "3306"}
    script = render(REFERENCE_TEMPLATE, mapping).script
    assert "<p>DB endpoint: ${database.Endpoint.Address}:3306</p>" in script
    assert "{{" not in script
