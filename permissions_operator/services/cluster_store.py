from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog
from kubernetes import client, config
from kubernetes.client import ApiClient
from kubernetes.config.config_exception import ConfigException
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..exceptions import ConfigurationError, translate_client_error
from ..reconcile.synthesizer import BindingIdentity, BindingScope
from ..scheme import CLUSTER_ROLE_BINDING_KIND, GROUP_PERMISSION_KIND, Scheme
from ..schemas import GroupPermission, GroupPermissionStatus, split_key, status_payload

logger = structlog.get_logger(__name__)


class ClusterStore(Protocol):
    """What the reconciler needs from the cluster."""

    async def get_spec(self, key: str) -> GroupPermission: ...

    async def get_generation(self, key: str) -> int | None: ...

    async def list_group_permissions(self) -> list[GroupPermission]: ...

    async def list_namespaces(self) -> list[str]: ...

    async def list_bindings(self, scope: BindingScope, selector: str) -> list[Any]: ...

    async def create_binding(self, obj: Any) -> None: ...

    async def delete_binding(self, identity: BindingIdentity) -> None: ...

    async def update_status(self, key: str, status: GroupPermissionStatus, resource_version: str | None) -> None: ...


def load_kube_config(settings: Settings) -> ApiClient:
    try:
        if settings.in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(
                config_file=settings.kube_config_path,
                context=settings.kube_context,
            )
    except ConfigException as exc:
        raise ConfigurationError(f"cannot load Kubernetes configuration: {exc}") from exc
    return client.ApiClient()


class KubernetesClusterStore:
    """ClusterStore backed by the official Kubernetes Python client.

    Every call runs on a worker thread and carries the configured request
    timeout; client errors are translated into the operator error types.
    """

    def __init__(self, scheme: Scheme, api_client: ApiClient, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._rbac_v1 = client.RbacAuthorizationV1Api(api_client)
        self._core_v1 = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)
        self._gp = scheme.resource(GROUP_PERMISSION_KIND)
        self._timeout = self.settings.request_timeout_seconds

    async def _call(self, what: str, fn, *args, **kwargs):
        kwargs.setdefault("_request_timeout", self._timeout)
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as exc:
            raise translate_client_error(exc, what) from exc

    async def get_spec(self, key: str) -> GroupPermission:
        namespace, name = split_key(key)
        raw = await self._call(
            f"get {GROUP_PERMISSION_KIND} {key}",
            self._custom.get_namespaced_custom_object,
            self._gp.group,
            self._gp.version,
            namespace,
            self._gp.plural,
            name,
        )
        try:
            return GroupPermission.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(
                f"{GROUP_PERMISSION_KIND} {key} does not match the schema: {exc.error_count()} error(s)",
                details={"errors": exc.errors(include_url=False)},
            ) from exc

    async def get_generation(self, key: str) -> int | None:
        gp = await self.get_spec(key)
        return gp.metadata.generation

    async def list_group_permissions(self) -> list[GroupPermission]:
        namespace = self.settings.watch_namespace
        if namespace:
            raw = await self._call(
                f"list {GROUP_PERMISSION_KIND}",
                self._custom.list_namespaced_custom_object,
                self._gp.group,
                self._gp.version,
                namespace,
                self._gp.plural,
            )
        else:
            raw = await self._call(
                f"list {GROUP_PERMISSION_KIND}",
                self._custom.list_cluster_custom_object,
                self._gp.group,
                self._gp.version,
                self._gp.plural,
            )
        items: list[GroupPermission] = []
        for item in raw.get("items", []):
            try:
                items.append(GroupPermission.model_validate(item))
            except ValueError as exc:
                logger.warning("cluster_store.invalid_group_permission", error=str(exc))
        return items

    async def list_namespaces(self) -> list[str]:
        result = await self._call("list namespaces", self._core_v1.list_namespace)
        return [ns.metadata.name for ns in result.items]

    async def list_bindings(self, scope: BindingScope, selector: str) -> list[Any]:
        if scope is BindingScope.CLUSTER:
            result = await self._call(
                "list clusterrolebindings",
                self._rbac_v1.list_cluster_role_binding,
                label_selector=selector,
            )
        else:
            result = await self._call(
                "list rolebindings",
                self._rbac_v1.list_role_binding_for_all_namespaces,
                label_selector=selector,
            )
        return list(result.items)

    async def create_binding(self, obj: Any) -> None:
        name = obj.metadata.name
        if obj.kind == CLUSTER_ROLE_BINDING_KIND:
            await self._call(f"create clusterrolebinding {name}", self._rbac_v1.create_cluster_role_binding, obj)
        else:
            namespace = obj.metadata.namespace
            await self._call(
                f"create rolebinding {namespace}/{name}",
                self._rbac_v1.create_namespaced_role_binding,
                namespace,
                obj,
            )

    async def delete_binding(self, identity: BindingIdentity) -> None:
        if identity.scope is BindingScope.CLUSTER:
            await self._call(
                f"delete clusterrolebinding {identity.binding_name}",
                self._rbac_v1.delete_cluster_role_binding,
                identity.binding_name,
            )
        else:
            await self._call(
                f"delete rolebinding {identity.namespace}/{identity.binding_name}",
                self._rbac_v1.delete_namespaced_role_binding,
                identity.binding_name,
                identity.namespace,
            )

    async def update_status(self, key: str, status: GroupPermissionStatus, resource_version: str | None) -> None:
        namespace, name = split_key(key)
        body: dict[str, Any] = status_payload(status)
        if resource_version:
            # a resourceVersion in a merge patch is a precondition: stale writes get 409 Conflict
            body["metadata"] = {"resourceVersion": resource_version}
        await self._call(
            f"update status of {GROUP_PERMISSION_KIND} {key}",
            self._custom.patch_namespaced_custom_object_status,
            self._gp.group,
            self._gp.version,
            namespace,
            self._gp.plural,
            name,
            body,
        )
