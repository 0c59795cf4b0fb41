"""
Type registration for the objects the operator reads and writes.

The scheme is built once at startup and handed to the cluster store; nothing
mutates it afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

GROUP_PERMISSION_KIND = "GroupPermission"
CLUSTER_ROLE_BINDING_KIND = "ClusterRoleBinding"
ROLE_BINDING_KIND = "RoleBinding"

RBAC_API_GROUP = "rbac.authorization.k8s.io"


@dataclass(frozen=True)
class ResourceType:
    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool


class Scheme:
    def __init__(self, types: Mapping[str, ResourceType]) -> None:
        self._types = MappingProxyType(dict(types))

    def resource(self, kind: str) -> ResourceType:
        try:
            return self._types[kind]
        except KeyError:
            raise KeyError(f"kind {kind!r} is not registered") from None

    def __contains__(self, kind: object) -> bool:
        return kind in self._types


class SchemeBuilder:
    def __init__(self) -> None:
        self._types: dict[str, ResourceType] = {}

    def add_known_type(self, resource: ResourceType) -> "SchemeBuilder":
        existing = self._types.get(resource.kind)
        if existing is not None and existing != resource:
            raise ValueError(f"kind {resource.kind!r} registered twice with different definitions")
        self._types[resource.kind] = resource
        return self

    def build(self) -> Scheme:
        return Scheme(self._types)


def build_scheme() -> Scheme:
    """Register GroupPermission and the RBAC binding kinds."""
    return (
        SchemeBuilder()
        .add_known_type(
            ResourceType(
                group="managed.openshift.io",
                version="v1alpha1",
                kind=GROUP_PERMISSION_KIND,
                plural="grouppermissions",
                namespaced=True,
            )
        )
        .add_known_type(
            ResourceType(
                group=RBAC_API_GROUP,
                version="v1",
                kind=CLUSTER_ROLE_BINDING_KIND,
                plural="clusterrolebindings",
                namespaced=False,
            )
        )
        .add_known_type(
            ResourceType(
                group=RBAC_API_GROUP,
                version="v1",
                kind=ROLE_BINDING_KIND,
                plural="rolebindings",
                namespaced=True,
            )
        )
        .build()
    )
