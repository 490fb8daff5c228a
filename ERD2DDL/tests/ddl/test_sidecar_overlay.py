"""Unit tests for sidecar overlay parsing."""

import pytest
import yaml
from pydantic import ValidationError

from ERD2DDL.ir.models.sidecar import SidecarEntityOverlay, SidecarOverlay


SIDECAR_YAML = """
entities:
  Event:
    partitions:
      by: list
      columns: [region]
    rls:
      policies:
        - name: tenant_only
          for: select
          using: tenant_id = current_setting('app.tenant')::uuid
    migrations.post: |
      GRANT SELECT ON Event TO analytics;
  Audit:
    rls: enable
"""


class TestSidecarOverlay:
    """SidecarOverlay.from_mapping and entity lookups."""

    def test_from_yaml_mapping(self):
        overlay = SidecarOverlay.from_mapping(yaml.safe_load(SIDECAR_YAML))
        event = overlay.for_entity("Event")
        assert event.partitions.method == "LIST"
        assert event.partitions.columns == ["region"]
        assert event.rls.enabled is True
        policy = event.rls.policies[0]
        assert policy.name == "tenant_only"
        assert policy.command == "select"
        assert policy.using == "tenant_id = current_setting('app.tenant')::uuid"
        assert event.post == "GRANT SELECT ON Event TO analytics;\n"
        assert overlay.for_entity("Audit").rls.enabled is True

    def test_plain_mapping_without_entities_key(self):
        overlay = SidecarOverlay.from_mapping({"Event": {"rls": False}})
        assert overlay.for_entity("Event").rls.enabled is False
        assert overlay.for_entity("Missing") is None

    def test_none_and_empty_overlays(self):
        assert SidecarOverlay.from_mapping(None).entities == {}
        overlay = SidecarOverlay.from_mapping({"Event": None})
        assert overlay.for_entity("Event").post is None
        assert overlay.for_entity("Event").rls is None

    def test_instances_pass_through(self):
        overlay = SidecarOverlay.from_mapping({"Event": {}})
        assert SidecarOverlay.from_mapping(overlay) is overlay

    def test_unknown_entities(self):
        overlay = SidecarOverlay.from_mapping({"Event": {}, "Ghost": {}})
        assert overlay.unknown_entities(["Event", "Other"]) == ["Ghost"]


@pytest.mark.parametrize(
    "value, method, columns, clause",
    [
        ("HASH (id)", "RANGE", [], "HASH (id)"),
        (["created_at"], "RANGE", ["created_at"], None),
        ({"method": "hash", "columns": ["id"]}, "HASH", ["id"], None),
    ],
)
def test_partition_shapes(value, method, columns, clause) -> None:
    partitions = SidecarEntityOverlay(partitions=value).partitions
    assert partitions.method == method
    assert partitions.columns == columns
    assert partitions.clause == clause


@pytest.mark.parametrize("value, enabled", [(True, True), ("off", False), ("ENABLED", True), ({}, True)])
def test_rls_shapes(value, enabled) -> None:
    assert SidecarEntityOverlay(rls=value).rls.enabled is enabled


def test_nested_migrations_take_precedence() -> None:
    overlay = SidecarEntityOverlay.model_validate({"migrations": {"post": "A;"}, "migrations.post": "B;"})
    assert overlay.post == "A;"


def test_invalid_policy_is_rejected() -> None:
    with pytest.raises(ValidationError):
        SidecarEntityOverlay(rls={"policies": [{"using": "true"}]})
