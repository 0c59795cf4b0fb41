"""
One reconcile pass for a GroupPermission.

Fetching -> Synthesizing -> Diffing -> Applying -> Recording -> Done, with
Failed reachable on collaborator errors. Creates and deletes are attempted
independently; each failure lands in the role's condition and the pass asks
to be retried.
"""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field

import structlog

from ..config import Settings, get_settings
from ..core.reconcile_context import pass_id_var, reconcile_key_var
from ..exceptions import (
    AlreadyExistsError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OperatorError,
    PartialApplyError,
)
from ..observability import ReconcileMetrics, reconcile_metrics
from ..schemas import GroupPermission, GroupPermissionStatus
from .differ import BindingDiff, diff, observed_identities, owned_identities, split_by_scope
from .ledger import STATE_COMPLETED, STATE_DEGRADED, STATE_FAILED, Clock, ConditionLedger, utcnow
from .synthesizer import (
    MANAGED_SELECTOR,
    BindingIdentity,
    BindingScope,
    build_binding,
    compile_rules,
    synthesize,
    validate_spec,
)

logger = structlog.get_logger(__name__)


class ReconcilePhase(str, enum.Enum):
    FETCHING = "Fetching"
    SYNTHESIZING = "Synthesizing"
    DIFFING = "Diffing"
    APPLYING = "Applying"
    RECORDING = "Recording"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class ReconcileResult:
    key: str
    phase: ReconcilePhase
    requeue: bool = False
    requeue_after: float | None = None
    error: OperatorError | None = None
    superseded: bool = False
    diff: BindingDiff | None = None
    created: int = 0
    deleted: int = 0

    @property
    def outcome(self) -> str:
        if self.superseded:
            return "superseded"
        if self.phase is ReconcilePhase.DONE:
            return "success"
        if isinstance(self.error, ConfigurationError):
            return "configuration_error"
        if isinstance(self.error, PartialApplyError):
            return "partial_failure"
        return "error"


@dataclass
class _RoleOutcome:
    applied: int = 0
    failures: list[str] = field(default_factory=list)


class GroupPermissionReconciler:
    def __init__(
        self,
        store,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        metrics: ReconcileMetrics | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        self._metrics = metrics or reconcile_metrics

    async def reconcile(self, key: str) -> ReconcileResult:
        key_token = reconcile_key_var.set(key)
        pass_token = pass_id_var.set(uuid.uuid4().hex[:12])
        start = time.perf_counter()
        try:
            result = await self._reconcile(key)
        finally:
            reconcile_key_var.reset(key_token)
            pass_id_var.reset(pass_token)
        self._metrics.observe(
            result.outcome,
            (time.perf_counter() - start) * 1000,
            created=result.created,
            deleted=result.deleted,
        )
        return result

    async def _reconcile(self, key: str) -> ReconcileResult:
        log = logger.bind(key=key)

        # Fetching
        try:
            gp = await self.store.get_spec(key)
        except NotFoundError:
            return await self._cleanup_deleted(key)
        except ConfigurationError as exc:
            log.error("reconcile.invalid_resource", error=exc.message)
            return ReconcileResult(key, ReconcilePhase.FAILED, error=exc)
        except OperatorError as exc:
            log.warning("reconcile.fetch_failed", error=exc.message)
            return ReconcileResult(key, ReconcilePhase.FAILED, requeue=True, error=exc)

        spec = gp.spec
        generation = gp.metadata.generation
        ledger = ConditionLedger.from_status(gp.status, clock=self._clock)

        config_errors = validate_spec(spec)
        if config_errors:
            return await self._record_configuration_errors(gp, ledger, config_errors)

        try:
            namespaces = await self.store.list_namespaces()
            cluster_objects = await self.store.list_bindings(BindingScope.CLUSTER, MANAGED_SELECTOR)
            namespaced_objects = await self.store.list_bindings(BindingScope.NAMESPACE, MANAGED_SELECTOR)
        except OperatorError as exc:
            log.warning("reconcile.list_failed", error=exc.message)
            return ReconcileResult(key, ReconcilePhase.FAILED, requeue=True, error=exc)

        if await self._superseded(key, generation):
            return self._abandon(key, ReconcilePhase.FETCHING)

        # Synthesizing
        desired = synthesize(spec, namespaces, compile_rules(spec))

        # Diffing, one scope at a time: they are different object kinds
        desired_by_scope = split_by_scope(desired)
        planned = BindingDiff()
        for scope, objects in ((BindingScope.CLUSTER, cluster_objects), (BindingScope.NAMESPACE, namespaced_objects)):
            observed = observed_identities(objects, owner=key)
            planned = planned + diff(desired_by_scope[scope], observed, spec.group_name)
            # bindings this resource created for a previous groupName
            stale = {i for i in owned_identities(objects, key) if i.group_name != spec.group_name}
            planned = planned + BindingDiff(to_delete=sorted(stale))

        log.info(
            "reconcile.planned",
            desired=len(desired),
            to_create=len(planned.to_create),
            to_delete=len(planned.to_delete),
        )

        if self.settings.dry_run:
            for identity in planned.to_create:
                log.info("reconcile.dry_run_create", binding=str(identity))
            for identity in planned.to_delete:
                log.info("reconcile.dry_run_delete", binding=str(identity))
            return ReconcileResult(key, ReconcilePhase.DONE, diff=planned)

        if await self._superseded(key, generation):
            return self._abandon(key, ReconcilePhase.DIFFING)

        # Applying
        outcomes: dict[str, _RoleOutcome] = {}
        created = deleted = 0
        for identity in planned.to_create:
            outcome = outcomes.setdefault(identity.role_name, _RoleOutcome())
            try:
                await self.store.create_binding(build_binding(identity, owner=key))
                created += 1
                log.info("reconcile.binding_created", binding=str(identity))
            except AlreadyExistsError:
                log.debug("reconcile.binding_exists", binding=str(identity))
            except OperatorError as exc:
                log.warning("reconcile.binding_create_failed", binding=str(identity), error=exc.message)
                outcome.failures.append(f"create {identity}: {exc.message}")
                continue
            outcome.applied += 1

        for identity in planned.to_delete:
            outcome = outcomes.setdefault(identity.role_name, _RoleOutcome())
            try:
                await self.store.delete_binding(identity)
                deleted += 1
                log.info("reconcile.binding_deleted", binding=str(identity))
            except NotFoundError:
                log.debug("reconcile.binding_already_gone", binding=str(identity))
            except OperatorError as exc:
                log.warning("reconcile.binding_delete_failed", binding=str(identity), error=exc.message)
                outcome.failures.append(f"delete {identity}: {exc.message}")
                continue
            outcome.applied += 1

        if await self._superseded(key, generation):
            result = self._abandon(key, ReconcilePhase.APPLYING)
            result.created, result.deleted = created, deleted
            return result

        # Recording
        desired_count = _count_by_role(desired)
        failed_roles = sorted(role for role, outcome in outcomes.items() if outcome.failures)
        # a role dropped from the spec keeps a condition while its bindings fail to delete
        recorded_roles = spec.role_names()
        recorded_roles += [role for role in failed_roles if role not in recorded_roles]
        for role in recorded_roles:
            outcome = outcomes.get(role, _RoleOutcome())
            if not outcome.failures:
                count = desired_count.get(role, 0)
                self._record(
                    ledger,
                    role,
                    f"{count} binding(s) grant ClusterRole {role} to group {spec.group_name}",
                    True,
                    STATE_COMPLETED,
                )
            elif outcome.applied:
                self._record(ledger, role, "; ".join(outcome.failures), False, STATE_DEGRADED)
            else:
                self._record(ledger, role, "; ".join(outcome.failures), False, STATE_FAILED)
        ledger.prune(recorded_roles)

        status = ledger.to_status()
        persist_error = await self._persist(gp, status)
        result = ReconcileResult(key, ReconcilePhase.DONE, diff=planned, created=created, deleted=deleted)
        if persist_error is not None:
            result.phase = ReconcilePhase.FAILED
            result.error = persist_error
            result.requeue = True
            if isinstance(persist_error, ConflictError):
                result.requeue_after = 0
            return result

        if failed_roles:
            result.phase = ReconcilePhase.FAILED
            result.error = PartialApplyError(
                f"{len(failed_roles)} role(s) failed to reconcile: {', '.join(failed_roles)}",
                failed_roles=failed_roles,
            )
            result.requeue = True
            log.warning("reconcile.partial_failure", failed_roles=failed_roles)
            return result

        log.info("reconcile.completed", bindings_created=created, bindings_deleted=deleted, state=status.state)
        return result

    def _record(self, ledger: ConditionLedger, role: str, message: str, active: bool, state: str) -> None:
        current = ledger.get(role)
        if current is not None and (current.message, current.status, current.state) == (message, active, state):
            return
        ledger.upsert(role, message, active, state)

    async def _record_configuration_errors(
        self,
        gp: GroupPermission,
        ledger: ConditionLedger,
        errors: list[ConfigurationError],
    ) -> ReconcileResult:
        for error in errors:
            logger.error("reconcile.configuration_error", key=gp.key, error=error.message, role=error.cluster_role_name)
            if error.cluster_role_name:
                self._record(ledger, error.cluster_role_name, error.message, False, STATE_FAILED)
        ledger.prune(gp.spec.role_names())

        result = ReconcileResult(gp.key, ReconcilePhase.FAILED, error=errors[0])
        if self.settings.dry_run:
            return result
        persist_error = await self._persist(gp, ledger.to_status(STATE_FAILED))
        if persist_error is not None and persist_error.retryable:
            result.requeue = True
            if isinstance(persist_error, ConflictError):
                result.requeue_after = 0
        return result

    async def _persist(self, gp: GroupPermission, status: GroupPermissionStatus) -> OperatorError | None:
        if status == gp.status:
            return None
        try:
            await self.store.update_status(gp.key, status, gp.metadata.resource_version)
        except NotFoundError:
            logger.info("reconcile.status_target_gone", key=gp.key)
            return None
        except OperatorError as exc:
            logger.warning("reconcile.status_update_failed", key=gp.key, error=exc.message)
            return exc
        return None

    async def _superseded(self, key: str, generation: int | None) -> bool:
        if generation is None:
            return False
        try:
            current = await self.store.get_generation(key)
        except NotFoundError:
            return True
        except OperatorError as exc:
            # cannot tell; the writes below are idempotent so carry on
            logger.debug("reconcile.generation_check_failed", key=key, error=exc.message)
            return False
        return current is not None and current > generation

    def _abandon(self, key: str, phase: ReconcilePhase) -> ReconcileResult:
        logger.info("reconcile.superseded", key=key, phase=phase.value)
        return ReconcileResult(key, phase, requeue=True, requeue_after=0, superseded=True)

    async def _cleanup_deleted(self, key: str) -> ReconcileResult:
        """Remove the bindings a deleted GroupPermission left behind."""
        try:
            cluster_objects = await self.store.list_bindings(BindingScope.CLUSTER, MANAGED_SELECTOR)
            namespaced_objects = await self.store.list_bindings(BindingScope.NAMESPACE, MANAGED_SELECTOR)
        except OperatorError as exc:
            logger.warning("reconcile.cleanup_list_failed", key=key, error=exc.message)
            return ReconcileResult(key, ReconcilePhase.FAILED, requeue=True, error=exc)

        orphans = sorted(owned_identities([*cluster_objects, *namespaced_objects], key))
        planned = BindingDiff(to_delete=orphans)
        if self.settings.dry_run:
            for identity in orphans:
                logger.info("reconcile.dry_run_delete", key=key, binding=str(identity))
            return ReconcileResult(key, ReconcilePhase.DONE, diff=planned)

        deleted = 0
        failures: list[BindingIdentity] = []
        for identity in orphans:
            try:
                await self.store.delete_binding(identity)
                deleted += 1
                logger.info("reconcile.orphan_deleted", key=key, binding=str(identity))
            except NotFoundError:
                continue
            except OperatorError as exc:
                logger.warning("reconcile.orphan_delete_failed", key=key, binding=str(identity), error=exc.message)
                failures.append(identity)

        result = ReconcileResult(key, ReconcilePhase.DONE, diff=planned, deleted=deleted)
        if failures:
            roles = sorted({identity.role_name for identity in failures})
            result.phase = ReconcilePhase.FAILED
            result.error = PartialApplyError(f"{len(failures)} orphaned binding(s) could not be deleted", failed_roles=roles)
            result.requeue = True
        return result


def _count_by_role(identities: set[BindingIdentity]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for identity in identities:
        counts[identity.role_name] = counts.get(identity.role_name, 0) + 1
    return counts
