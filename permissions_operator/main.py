from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from kubernetes import client

from .config import Settings, get_settings
from .controller import Controller
from .core.logging import get_logger
from .exceptions import TransientError, register_exception_handlers
from .observability import reconcile_metrics
from .reconcile import GroupPermissionReconciler
from .scheme import build_scheme
from .services import GroupPermissionWatcher, KubernetesClusterStore, WorkQueue, load_kube_config

ControllerFactory = Callable[[Settings], Controller]


def build_controller(settings: Settings) -> Controller:
    scheme = build_scheme()
    api_client = load_kube_config(settings)
    store = KubernetesClusterStore(scheme, api_client, settings)
    queue = WorkQueue(settings.backoff_base_seconds, settings.backoff_max_seconds)
    reconciler = GroupPermissionReconciler(store, settings)
    watcher = GroupPermissionWatcher(client.CustomObjectsApi(api_client), scheme, queue.add, settings)
    return Controller(reconciler, queue, store, watcher=watcher, settings=settings)


def create_app(controller_factory: ControllerFactory = build_controller, settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = get_logger(__name__)
        controller = controller_factory(settings)
        app.state.controller = controller
        await controller.start()
        logger.info("operator started: %s", settings.operator_name)

        yield

        logger.info("operator shutting down")
        await controller.stop()

    app = FastAPI(
        title="RBAC Permissions Operator",
        description="Reconciles GroupPermission resources into ClusterRoleBindings and RoleBindings",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz(request: Request):
        controller: Controller | None = getattr(request.app.state, "controller", None)
        if controller is None or not controller.running:
            raise TransientError("controller is not running")
        if not controller.synced:
            raise TransientError("initial resync has not completed")
        return {"status": "ready", "queue_depth": len(controller.queue)}

    @app.get("/metrics")
    async def metrics():
        return reconcile_metrics.snapshot()

    return app
