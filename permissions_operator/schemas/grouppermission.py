from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts the CRD's camelCase field names and the snake_case attribute names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class NamespacePermission(CamelModel):
    cluster_role_name: str
    allow_first: bool
    namespaces_allowed_regex: str | None = None
    namespaces_denied_regex: str | None = None


class GroupPermissionSpec(CamelModel):
    group_name: str
    cluster_permissions: list[str] = Field(default_factory=list)
    permissions: list[NamespacePermission] = Field(default_factory=list)

    def role_names(self) -> list[str]:
        """Every ClusterRole named in this spec, cluster scope first, without duplicates."""
        names: list[str] = []
        for name in [*self.cluster_permissions, *(p.cluster_role_name for p in self.permissions)]:
            if name not in names:
                names.append(name)
        return names


class Condition(CamelModel):
    cluster_role_name: str
    message: str = ""
    status: bool
    state: str
    last_transition_time: datetime


class GroupPermissionStatus(CamelModel):
    state: str = ""
    conditions: list[Condition] = Field(default_factory=list)


class ObjectMeta(CamelModel):
    name: str
    namespace: str | None = None
    uid: str | None = None
    generation: int | None = None
    resource_version: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)


class GroupPermission(CamelModel):
    api_version: str = "managed.openshift.io/v1alpha1"
    kind: str = "GroupPermission"
    metadata: ObjectMeta
    spec: GroupPermissionSpec
    status: GroupPermissionStatus = Field(default_factory=GroupPermissionStatus)

    @property
    def key(self) -> str:
        return object_key(self.metadata.namespace, self.metadata.name)


def object_key(namespace: str | None, name: str) -> str:
    return f"{namespace}/{name}" if namespace else name


def split_key(key: str) -> tuple[str | None, str]:
    namespace, sep, name = key.partition("/")
    if not sep:
        return None, key
    return namespace, name


def status_payload(status: GroupPermissionStatus) -> dict:
    """Status body in the wire layout stored on the custom resource."""
    return {"status": status.model_dump(mode="json", by_alias=True)}
