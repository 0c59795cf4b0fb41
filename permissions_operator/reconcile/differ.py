from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .synthesizer import OWNER_ANNOTATION, BindingIdentity, BindingScope, binding_name


@dataclass(frozen=True)
class BindingDiff:
    to_create: list[BindingIdentity] = field(default_factory=list)
    to_delete: list[BindingIdentity] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.to_create and not self.to_delete

    def __add__(self, other: "BindingDiff") -> "BindingDiff":
        return BindingDiff(
            to_create=sorted({*self.to_create, *other.to_create}),
            to_delete=sorted({*self.to_delete, *other.to_delete}),
        )


def diff(desired: Iterable[BindingIdentity], observed: Iterable[BindingIdentity], group_name: str) -> BindingDiff:
    """Bindings to create and delete to turn `observed` into `desired`.

    Only observed bindings for `group_name` are ever proposed for deletion.
    """
    desired_set = set(desired)
    observed_set = set(observed)
    to_create = desired_set - observed_set
    to_delete = {identity for identity in observed_set - desired_set if identity.group_name == group_name}
    return BindingDiff(to_create=sorted(to_create), to_delete=sorted(to_delete))


def split_by_scope(identities: Iterable[BindingIdentity]) -> dict[BindingScope, set[BindingIdentity]]:
    scoped: dict[BindingScope, set[BindingIdentity]] = {scope: set() for scope in BindingScope}
    for identity in identities:
        scoped[identity.scope].add(identity)
    return scoped


def missing_names(desired_names: Iterable[str], observed_names: Iterable[str]) -> list[str]:
    """Names wanted but not present, in the order they were wanted."""
    observed = set(observed_names)
    missing: list[str] = []
    for name in desired_names:
        if name not in observed and name not in missing:
            missing.append(name)
    return missing


def observed_identity(obj: Any, owner: str | None = None) -> BindingIdentity | None:
    """Identity of a live ClusterRoleBinding/RoleBinding, or None if the operator does not manage it."""
    metadata = getattr(obj, "metadata", None)
    role_ref = getattr(obj, "role_ref", None)
    subjects = getattr(obj, "subjects", None) or []
    if metadata is None or role_ref is None or len(subjects) != 1:
        return None

    subject = subjects[0]
    if subject.kind != "Group" or role_ref.kind != "ClusterRole":
        return None
    if metadata.name != binding_name(role_ref.name, subject.name):
        return None

    annotations = metadata.annotations or {}
    recorded_owner = annotations.get(OWNER_ANNOTATION)
    if owner and recorded_owner and recorded_owner != owner:
        return None

    if metadata.namespace:
        return BindingIdentity.namespaced(role_ref.name, subject.name, metadata.namespace)
    return BindingIdentity.cluster(role_ref.name, subject.name)


def owned_identities(objects: Iterable[Any], owner: str) -> set[BindingIdentity]:
    """Identities of bindings recorded as created for the GroupPermission `owner`."""
    identities = set()
    for obj in objects:
        annotations = getattr(obj.metadata, "annotations", None) or {}
        if annotations.get(OWNER_ANNOTATION) != owner:
            continue
        identity = observed_identity(obj, owner)
        if identity is not None:
            identities.add(identity)
    return identities


def observed_identities(objects: Iterable[Any], owner: str | None = None) -> set[BindingIdentity]:
    identities = set()
    for obj in objects:
        identity = observed_identity(obj, owner)
        if identity is not None:
            identities.add(identity)
    return identities
