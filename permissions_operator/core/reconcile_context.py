"""
Reconcile-scoped context variables.

Lets every log line emitted during a pass carry the GroupPermission key and
pass id without threading them through each call.
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Optional


reconcile_key_var: ContextVar[Optional[str]] = ContextVar("reconcile_key", default=None)
pass_id_var: ContextVar[Optional[str]] = ContextVar("pass_id", default=None)
