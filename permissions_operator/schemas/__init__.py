from .grouppermission import (
    Condition,
    GroupPermission,
    GroupPermissionSpec,
    GroupPermissionStatus,
    NamespacePermission,
    ObjectMeta,
    object_key,
    split_key,
    status_payload,
)

__all__ = [
    "Condition",
    "GroupPermission",
    "GroupPermissionSpec",
    "GroupPermissionStatus",
    "NamespacePermission",
    "ObjectMeta",
    "object_key",
    "split_key",
    "status_payload",
]
