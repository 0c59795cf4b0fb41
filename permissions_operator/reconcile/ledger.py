"""
Per-role condition ledger stored in a GroupPermission's status.

One condition per ClusterRole name. Upserting an existing role replaces its
condition in place; a new role is appended. The ledger stamps
lastTransitionTime itself.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator

from ..schemas import Condition, GroupPermissionStatus

STATE_COMPLETED = "Completed"
STATE_DEGRADED = "Degraded"
STATE_FAILED = "failed"

# worst last
_SEVERITY = {STATE_COMPLETED: 0, STATE_DEGRADED: 1, STATE_FAILED: 2}

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class ConditionLedger:
    def __init__(self, conditions: Iterable[Condition] = (), clock: Clock = utcnow) -> None:
        self._clock = clock
        self._entries: "OrderedDict[str, Condition]" = OrderedDict()
        for condition in conditions:
            # a status written by something else may repeat a role; keep the first position, last value
            self._entries[condition.cluster_role_name] = condition

    @classmethod
    def from_status(cls, status: GroupPermissionStatus, clock: Clock = utcnow) -> "ConditionLedger":
        return cls(status.conditions, clock=clock)

    def upsert(self, cluster_role_name: str, message: str, active: bool, state: str) -> Condition:
        condition = Condition(
            cluster_role_name=cluster_role_name,
            message=message,
            status=active,
            state=state,
            last_transition_time=self._clock(),
        )
        # assigning an existing key keeps its position in an OrderedDict
        self._entries[cluster_role_name] = condition
        return condition

    def prune(self, keep: Iterable[str]) -> list[str]:
        """Drop conditions for roles not in `keep`; returns the dropped role names."""
        wanted = set(keep)
        dropped = [role for role in self._entries if role not in wanted]
        for role in dropped:
            del self._entries[role]
        return dropped

    def get(self, cluster_role_name: str) -> Condition | None:
        return self._entries.get(cluster_role_name)

    def conditions(self) -> list[Condition]:
        return list(self._entries.values())

    def worst_state(self, default: str = STATE_COMPLETED) -> str:
        states = [c.state for c in self._entries.values()]
        if not states:
            return default
        return max(states, key=lambda s: _SEVERITY.get(s, _SEVERITY[STATE_FAILED]))

    def to_status(self, state: str | None = None) -> GroupPermissionStatus:
        return GroupPermissionStatus(
            state=state if state is not None else self.worst_state(),
            conditions=self.conditions(),
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cluster_role_name: object) -> bool:
        return cluster_role_name in self._entries

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._entries.values())


def update_condition(
    status: GroupPermissionStatus,
    cluster_role_name: str,
    message: str,
    active: bool,
    state: str,
    clock: Clock = utcnow,
) -> GroupPermissionStatus:
    """Return a copy of `status` with the condition for `cluster_role_name` upserted."""
    ledger = ConditionLedger.from_status(status, clock=clock)
    ledger.upsert(cluster_role_name, message, active, state)
    return ledger.to_status(state=status.state)
