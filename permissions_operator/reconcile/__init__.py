"""
GroupPermission reconciliation engine.

namespace_filter -> synthesizer -> differ -> ledger, driven by reconciler.
"""

from .differ import BindingDiff, diff, missing_names, observed_identities, observed_identity, split_by_scope
from .ledger import (
    STATE_COMPLETED,
    STATE_DEGRADED,
    STATE_FAILED,
    ConditionLedger,
    update_condition,
)
from .namespace_filter import CompiledRule, compile_rule, filter_namespaces, matches
from .reconciler import GroupPermissionReconciler, ReconcilePhase, ReconcileResult
from .synthesizer import (
    BindingIdentity,
    BindingScope,
    binding_name,
    build_binding,
    build_cluster_role_binding,
    build_role_binding,
    cluster_binding_names,
    synthesize,
    validate_spec,
)

__all__ = [
    "BindingDiff",
    "BindingIdentity",
    "BindingScope",
    "CompiledRule",
    "ConditionLedger",
    "GroupPermissionReconciler",
    "ReconcilePhase",
    "ReconcileResult",
    "STATE_COMPLETED",
    "STATE_DEGRADED",
    "STATE_FAILED",
    "binding_name",
    "build_binding",
    "build_cluster_role_binding",
    "build_role_binding",
    "cluster_binding_names",
    "compile_rule",
    "diff",
    "filter_namespaces",
    "matches",
    "missing_names",
    "observed_identities",
    "observed_identity",
    "split_by_scope",
    "synthesize",
    "update_condition",
    "validate_spec",
]
