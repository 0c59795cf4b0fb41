"""
Namespace inclusion rules for namespace-scoped permissions.

A rule carries an optional allow pattern and an optional deny pattern. A
missing allow pattern allows every namespace, a missing deny pattern denies
none. Deny always wins; allowFirst only changes which pattern is evaluated
first. Patterns are unanchored; use ^ and $ to match a whole name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Pattern

from ..exceptions import ConfigurationError
from ..schemas import NamespacePermission


@dataclass(frozen=True)
class CompiledRule:
    cluster_role_name: str
    allow: Pattern[str] | None
    deny: Pattern[str] | None
    allow_first: bool


def _compile(pattern: str | None, role: str, field: str) -> Pattern[str] | None:
    if pattern is None or pattern == "":
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigurationError(
            f"invalid {field} {pattern!r} for ClusterRole {role}: {exc}",
            cluster_role_name=role,
            details={"field": field, "pattern": pattern},
        ) from exc


def compile_rule(rule: NamespacePermission | CompiledRule) -> CompiledRule:
    if isinstance(rule, CompiledRule):
        return rule
    return CompiledRule(
        cluster_role_name=rule.cluster_role_name,
        allow=_compile(rule.namespaces_allowed_regex, rule.cluster_role_name, "namespacesAllowedRegex"),
        deny=_compile(rule.namespaces_denied_regex, rule.cluster_role_name, "namespacesDeniedRegex"),
        allow_first=rule.allow_first,
    )


def _allowed(namespace: str, rule: CompiledRule) -> bool:
    return rule.allow is None or rule.allow.search(namespace) is not None


def _denied(namespace: str, rule: CompiledRule) -> bool:
    return rule.deny is not None and rule.deny.search(namespace) is not None


def matches(namespace: str, rule: NamespacePermission | CompiledRule) -> bool:
    compiled = compile_rule(rule)
    if compiled.allow_first:
        if not _allowed(namespace, compiled):
            return False
        return not _denied(namespace, compiled)

    if _denied(namespace, compiled):
        return False
    return _allowed(namespace, compiled)


def filter_namespaces(namespaces: Iterable[str], rule: NamespacePermission | CompiledRule) -> list[str]:
    compiled = compile_rule(rule)
    return [ns for ns in namespaces if matches(ns, compiled)]
