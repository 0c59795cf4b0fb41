import pytest

from permissions_operator.exceptions import ConfigurationError
from permissions_operator.reconcile.namespace_filter import compile_rule, filter_namespaces, matches
from permissions_operator.schemas import NamespacePermission

NAMESPACES = ["default", "kube-system", "team-a", "team-b", "openshift-monitoring"]


def rule(allow=None, deny=None, allow_first=True):
    return NamespacePermission(
        cluster_role_name="admin",
        namespaces_allowed_regex=allow,
        namespaces_denied_regex=deny,
        allow_first=allow_first,
    )


@pytest.mark.parametrize("allow_first", [True, False])
def test_deny_wins_over_allow_in_both_orders(allow_first):
    r = rule(allow="team-.*", deny="team-b", allow_first=allow_first)
    assert matches("team-a", r)
    assert not matches("team-b", r)
    assert not matches("default", r)


@pytest.mark.parametrize("allow_first", [True, False])
def test_namespace_matching_both_patterns_is_excluded(allow_first):
    r = rule(allow=".*", deny="kube-.*|openshift-.*", allow_first=allow_first)
    assert filter_namespaces(NAMESPACES, r) == ["default", "team-a", "team-b"]


def test_missing_allow_pattern_allows_everything():
    assert filter_namespaces(NAMESPACES, rule()) == NAMESPACES


def test_missing_deny_pattern_denies_nothing():
    assert filter_namespaces(NAMESPACES, rule(allow="team-.*")) == ["team-a", "team-b"]


def test_only_deny_pattern():
    assert filter_namespaces(NAMESPACES, rule(deny="kube-system", allow_first=False)) == [
        "default",
        "team-a",
        "team-b",
        "openshift-monitoring",
    ]


def test_patterns_match_anywhere_in_the_name():
    r = rule(allow="team")
    assert matches("team-a", r)
    assert matches("my-team", r)
    assert filter_namespaces(NAMESPACES, rule(deny="openshift", allow_first=False)) == [
        "default",
        "kube-system",
        "team-a",
        "team-b",
    ]


def test_anchors_restrict_to_the_whole_name():
    r = rule(allow="^team$")
    assert matches("team", r)
    assert not matches("team-a", r)


def test_empty_pattern_is_treated_as_absent():
    assert filter_namespaces(NAMESPACES, rule(allow="", deny="")) == NAMESPACES


def test_filter_preserves_input_order():
    r = rule(allow="team-.*|default")
    assert filter_namespaces(["team-b", "default", "team-a"], r) == ["team-b", "default", "team-a"]


def test_malformed_pattern_is_a_configuration_error():
    with pytest.raises(ConfigurationError) as excinfo:
        compile_rule(rule(allow="team-(", deny=None))
    assert excinfo.value.cluster_role_name == "admin"
    assert excinfo.value.details["field"] == "namespacesAllowedRegex"


def test_malformed_deny_pattern_is_reported_on_match():
    with pytest.raises(ConfigurationError):
        matches("default", rule(allow=".*", deny="[unclosed"))
