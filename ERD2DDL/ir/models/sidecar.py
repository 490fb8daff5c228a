"""Sidecar overlay: pre-parsed per-entity overrides merged during codegen.

The overlay is a mapping from entity name to override fields. Loading the
sidecar file is the caller's concern; this module only validates the
already-parsed mapping. Accepted shapes per entity::

    {
        "rls": True | {"enabled": True, "policies": [{"name": ..., "using": ...}]},
        "partitions": "RANGE (created_at)" | {"method": "RANGE", "columns": [...]} | [...],
        "migrations": {"post": "GRANT SELECT ON ... ;"},   # or "migrations.post": "..."
    }
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .schema import PartitionSpec, PolicySpec, RLSSpec


class SidecarMigrations(BaseModel):
    post: Optional[str] = Field(None, description="Free text appended verbatim after the entity's DDL")

    model_config = ConfigDict(frozen=True, extra="ignore")


class SidecarEntityOverlay(BaseModel):
    """Overrides for one entity; non-None values win over inline directives."""

    rls: Optional[RLSSpec] = None
    partitions: Optional[PartitionSpec] = None
    migrations: SidecarMigrations = Field(default_factory=SidecarMigrations)

    model_config = ConfigDict(frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _expand_dotted_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "migrations.post" not in data:
            return data
        data = dict(data)
        migrations = dict(data.get("migrations") or {})
        migrations.setdefault("post", data.pop("migrations.post"))
        data["migrations"] = migrations
        return data

    @field_validator("rls", mode="before")
    @classmethod
    def _coerce_rls(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return {"enabled": value}
        if isinstance(value, str):
            return {"enabled": value.strip().upper() in ("ENABLE", "ENABLED", "ON", "TRUE")}
        if isinstance(value, dict):
            value = dict(value)
            value.setdefault("enabled", True)
            policies = []
            for policy in value.get("policies") or []:
                if isinstance(policy, dict) and "for" in policy and "command" not in policy:
                    policy = dict(policy)
                    policy["command"] = policy.pop("for")
                policies.append(policy)
            value["policies"] = policies
        return value

    @field_validator("partitions", mode="before")
    @classmethod
    def _coerce_partitions(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"clause": value.strip()}
        if isinstance(value, (list, tuple)):
            return {"method": "RANGE", "columns": list(value)}
        if isinstance(value, dict):
            value = dict(value)
            if "by" in value and "method" not in value:
                value["method"] = value.pop("by")
            if isinstance(value.get("method"), str):
                value["method"] = value["method"].upper()
        return value

    @property
    def post(self) -> Optional[str]:
        return self.migrations.post


class SidecarOverlay(BaseModel):
    """Mapping from entity name to its overlay."""

    entities: Dict[str, SidecarEntityOverlay] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> SidecarOverlay:
        """Build an overlay from a plain mapping (e.g. the result of yaml.safe_load)."""
        if data is None:
            return cls()
        if isinstance(data, SidecarOverlay):
            return data
        entities = data.get("entities") if isinstance(data.get("entities"), dict) else data
        return cls(entities={str(name): overlay or {} for name, overlay in entities.items()})

    def for_entity(self, name: str) -> Optional[SidecarEntityOverlay]:
        return self.entities.get(name)

    def unknown_entities(self, entity_names: List[str]) -> List[str]:
        known = set(entity_names)
        return [name for name in self.entities if name not in known]
