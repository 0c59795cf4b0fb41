"""
Expansion of a GroupPermission spec into the bindings it implies.

Every binding, cluster or namespace scoped, is named `<roleName>-<groupName>`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Sequence

from kubernetes import client

from ..exceptions import ConfigurationError
from ..scheme import CLUSTER_ROLE_BINDING_KIND, RBAC_API_GROUP, ROLE_BINDING_KIND
from ..schemas import GroupPermissionSpec
from .namespace_filter import CompiledRule, compile_rule, filter_namespaces

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "rbac-permissions-operator"
OWNER_ANNOTATION = "managed.openshift.io/group-permission"

MANAGED_SELECTOR = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"


class BindingScope(str, enum.Enum):
    CLUSTER = "cluster"
    NAMESPACE = "namespace"


@dataclass(frozen=True, order=True)
class BindingIdentity:
    scope: BindingScope
    role_name: str
    group_name: str
    namespace: str | None = None

    @classmethod
    def cluster(cls, role_name: str, group_name: str) -> "BindingIdentity":
        return cls(BindingScope.CLUSTER, role_name, group_name)

    @classmethod
    def namespaced(cls, role_name: str, group_name: str, namespace: str) -> "BindingIdentity":
        return cls(BindingScope.NAMESPACE, role_name, group_name, namespace)

    @property
    def binding_name(self) -> str:
        return binding_name(self.role_name, self.group_name)

    def __str__(self) -> str:
        if self.scope is BindingScope.CLUSTER:
            return f"{CLUSTER_ROLE_BINDING_KIND}/{self.binding_name}"
        return f"{ROLE_BINDING_KIND}/{self.namespace}/{self.binding_name}"


def binding_name(role_name: str, group_name: str) -> str:
    return f"{role_name}-{group_name}"


def cluster_binding_names(spec: GroupPermissionSpec) -> list[str]:
    return [binding_name(role, spec.group_name) for role in spec.cluster_permissions]


def validate_spec(spec: GroupPermissionSpec) -> list[ConfigurationError]:
    """Collect every configuration problem in a GroupPermission spec, keyed by ClusterRole."""
    errors: list[ConfigurationError] = []
    if not spec.group_name.strip():
        for role in spec.role_names():
            errors.append(ConfigurationError("groupName must not be empty", cluster_role_name=role))
        if not errors:
            errors.append(ConfigurationError("groupName must not be empty"))
        return errors

    for rule in spec.permissions:
        try:
            compile_rule(rule)
        except ConfigurationError as exc:
            errors.append(exc)
    return errors


def compile_rules(spec: GroupPermissionSpec) -> list[CompiledRule]:
    return [compile_rule(rule) for rule in spec.permissions]


def synthesize(
    spec: GroupPermissionSpec,
    observed_namespaces: Iterable[str],
    rules: Sequence[CompiledRule] | None = None,
) -> set[BindingIdentity]:
    namespaces = list(observed_namespaces)
    desired: set[BindingIdentity] = set()

    for role in spec.cluster_permissions:
        desired.add(BindingIdentity.cluster(role, spec.group_name))

    for rule in rules if rules is not None else compile_rules(spec):
        for namespace in filter_namespaces(namespaces, rule):
            desired.add(BindingIdentity.namespaced(rule.cluster_role_name, spec.group_name, namespace))

    return desired


def _metadata(identity: BindingIdentity, owner: str | None) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(
        name=identity.binding_name,
        namespace=identity.namespace,
        labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
        annotations={OWNER_ANNOTATION: owner} if owner else None,
    )


def _subjects(group_name: str) -> list[client.RbacV1Subject]:
    return [client.RbacV1Subject(kind="Group", name=group_name, api_group=RBAC_API_GROUP)]


def _role_ref(role_name: str) -> client.V1RoleRef:
    return client.V1RoleRef(api_group=RBAC_API_GROUP, kind="ClusterRole", name=role_name)


def build_cluster_role_binding(role_name: str, group_name: str, owner: str | None = None) -> client.V1ClusterRoleBinding:
    identity = BindingIdentity.cluster(role_name, group_name)
    return client.V1ClusterRoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind=CLUSTER_ROLE_BINDING_KIND,
        metadata=_metadata(identity, owner),
        subjects=_subjects(group_name),
        role_ref=_role_ref(role_name),
    )


def build_role_binding(role_name: str, group_name: str, namespace: str, owner: str | None = None) -> client.V1RoleBinding:
    identity = BindingIdentity.namespaced(role_name, group_name, namespace)
    return client.V1RoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind=ROLE_BINDING_KIND,
        metadata=_metadata(identity, owner),
        subjects=_subjects(group_name),
        role_ref=_role_ref(role_name),
    )


def build_binding(identity: BindingIdentity, owner: str | None = None):
    if identity.scope is BindingScope.CLUSTER:
        return build_cluster_role_binding(identity.role_name, identity.group_name, owner)
    return build_role_binding(identity.role_name, identity.group_name, identity.namespace or "", owner)
