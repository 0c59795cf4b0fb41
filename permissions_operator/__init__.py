"""Reconciles GroupPermission resources into Kubernetes RBAC bindings."""

__version__ = "0.1.0"
