from .cluster_store import ClusterStore, KubernetesClusterStore, load_kube_config
from .watcher import GroupPermissionWatcher
from .work_queue import WorkQueue

__all__ = [
    "ClusterStore",
    "GroupPermissionWatcher",
    "KubernetesClusterStore",
    "WorkQueue",
    "load_kube_config",
]
