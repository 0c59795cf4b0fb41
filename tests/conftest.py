from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from permissions_operator.config import Settings
from permissions_operator.exceptions import AlreadyExistsError, ConflictError, NotFoundError, OperatorError
from permissions_operator.observability import ReconcileMetrics
from permissions_operator.reconcile.synthesizer import BindingIdentity, BindingScope, build_cluster_role_binding, build_role_binding
from permissions_operator.schemas import (
    Condition,
    GroupPermission,
    GroupPermissionSpec,
    GroupPermissionStatus,
    NamespacePermission,
    ObjectMeta,
)

OPERATOR_NAMESPACE = "rbac-permissions-operator"


class FakeClusterStore:
    """In-memory ClusterStore with the API server's create/delete/conflict semantics."""

    def __init__(self, namespaces: list[str] | None = None) -> None:
        self.namespaces = list(namespaces or [])
        self.group_permissions: dict[str, GroupPermission] = {}
        self.cluster_bindings: dict[str, Any] = {}
        self.role_bindings: dict[tuple[str, str], Any] = {}
        self.status_updates: list[tuple[str, GroupPermissionStatus]] = []
        self.created: list[str] = []
        self.deleted: list[str] = []
        # failure injection, keyed by binding name or "namespace/name"
        self.create_errors: dict[str, OperatorError] = {}
        self.delete_errors: dict[str, OperatorError] = {}
        self.list_error: OperatorError | None = None
        self.status_errors: list[OperatorError] = []
        self.generation_checks = 0
        self.on_generation_check = None
        self._resource_version = 100

    def _next_rv(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def add_group_permission(self, gp: GroupPermission) -> GroupPermission:
        gp = gp.model_copy(deep=True)
        gp.metadata.resource_version = self._next_rv()
        self.group_permissions[gp.key] = gp
        return gp

    def bump_generation(self, key: str) -> None:
        gp = self.group_permissions[key]
        gp.metadata.generation = (gp.metadata.generation or 0) + 1
        gp.metadata.resource_version = self._next_rv()

    def add_binding(self, obj: Any) -> None:
        if obj.metadata.namespace:
            self.role_bindings[(obj.metadata.namespace, obj.metadata.name)] = obj
        else:
            self.cluster_bindings[obj.metadata.name] = obj

    async def get_spec(self, key: str) -> GroupPermission:
        if key not in self.group_permissions:
            raise NotFoundError(f"{key} not found")
        return self.group_permissions[key].model_copy(deep=True)

    async def get_generation(self, key: str) -> int | None:
        self.generation_checks += 1
        if self.on_generation_check is not None:
            self.on_generation_check(self, key)
        if key not in self.group_permissions:
            raise NotFoundError(f"{key} not found")
        return self.group_permissions[key].metadata.generation

    async def list_group_permissions(self) -> list[GroupPermission]:
        return [gp.model_copy(deep=True) for gp in self.group_permissions.values()]

    async def list_namespaces(self) -> list[str]:
        if self.list_error:
            raise self.list_error
        return list(self.namespaces)

    async def list_bindings(self, scope: BindingScope, selector: str) -> list[Any]:
        if self.list_error:
            raise self.list_error
        label, _, value = selector.partition("=")
        objects = self.cluster_bindings.values() if scope is BindingScope.CLUSTER else self.role_bindings.values()
        return [obj for obj in objects if (obj.metadata.labels or {}).get(label) == value]

    async def create_binding(self, obj: Any) -> None:
        ref = f"{obj.metadata.namespace}/{obj.metadata.name}" if obj.metadata.namespace else obj.metadata.name
        if ref in self.create_errors:
            raise self.create_errors[ref]
        exists = (
            (obj.metadata.namespace, obj.metadata.name) in self.role_bindings
            if obj.metadata.namespace
            else obj.metadata.name in self.cluster_bindings
        )
        if exists:
            raise AlreadyExistsError(f"{ref} already exists")
        self.add_binding(obj)
        self.created.append(ref)

    async def delete_binding(self, identity: BindingIdentity) -> None:
        if identity.scope is BindingScope.CLUSTER:
            ref = identity.binding_name
            store, store_key = self.cluster_bindings, identity.binding_name
        else:
            ref = f"{identity.namespace}/{identity.binding_name}"
            store, store_key = self.role_bindings, (identity.namespace, identity.binding_name)
        if ref in self.delete_errors:
            raise self.delete_errors[ref]
        if store_key not in store:
            raise NotFoundError(f"{ref} not found")
        del store[store_key]
        self.deleted.append(ref)

    async def update_status(self, key: str, status: GroupPermissionStatus, resource_version: str | None) -> None:
        if self.status_errors:
            raise self.status_errors.pop(0)
        if key not in self.group_permissions:
            raise NotFoundError(f"{key} not found")
        gp = self.group_permissions[key]
        if resource_version and resource_version != gp.metadata.resource_version:
            raise ConflictError(f"{key} has been modified")
        gp.status = status.model_copy(deep=True)
        gp.metadata.resource_version = self._next_rv()
        self.status_updates.append((key, status))


class FixedClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


def make_group_permission(
    group_name: str = "exampleGroupName",
    cluster_permissions: list[str] | None = None,
    permissions: list[NamespacePermission] | None = None,
    conditions: list[Condition] | None = None,
    name: str = "testGroupPermission",
    generation: int = 1,
) -> GroupPermission:
    return GroupPermission(
        metadata=ObjectMeta(name=name, namespace=OPERATOR_NAMESPACE, generation=generation),
        spec=GroupPermissionSpec(
            group_name=group_name,
            cluster_permissions=cluster_permissions or [],
            permissions=permissions or [],
        ),
        status=GroupPermissionStatus(state="", conditions=conditions or []),
    )


def managed_cluster_binding(role: str, group: str, owner: str | None = None):
    return build_cluster_role_binding(role, group, owner=owner)


def managed_role_binding(role: str, group: str, namespace: str, owner: str | None = None):
    return build_role_binding(role, group, namespace, owner=owner)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, app_env="test", workers=1, resync_period_seconds=3600)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def metrics() -> ReconcileMetrics:
    return ReconcileMetrics()


@pytest.fixture
def store() -> FakeClusterStore:
    return FakeClusterStore(namespaces=["default", "kube-system", "team-a", "team-b", "openshift-monitoring"])
