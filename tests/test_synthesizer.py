from conftest import make_group_permission

from permissions_operator.reconcile.synthesizer import (
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    OWNER_ANNOTATION,
    BindingIdentity,
    BindingScope,
    build_binding,
    build_cluster_role_binding,
    build_role_binding,
    cluster_binding_names,
    synthesize,
    validate_spec,
)
from permissions_operator.schemas import NamespacePermission

NAMESPACES = ["default", "team-a", "team-b"]


def test_cluster_binding_names_follow_role_group_convention():
    gp = make_group_permission(cluster_permissions=["exampleClusterRoleName", "exampleClusterRoleNameTwo"])
    assert cluster_binding_names(gp.spec) == [
        "exampleClusterRoleName-exampleGroupName",
        "exampleClusterRoleNameTwo-exampleGroupName",
    ]


def test_build_cluster_role_binding_shape():
    crb = build_cluster_role_binding("exampleClusterRoleName", "exampleGroupName")

    assert crb.metadata.name == "exampleClusterRoleName-exampleGroupName"
    assert crb.kind == "ClusterRoleBinding"
    assert len(crb.subjects) == 1
    assert crb.subjects[0].kind == "Group"
    assert crb.subjects[0].name == "exampleGroupName"
    assert crb.role_ref.kind == "ClusterRole"
    assert crb.role_ref.name == "exampleClusterRoleName"
    assert crb.metadata.labels == {MANAGED_BY_LABEL: MANAGED_BY_VALUE}


def test_build_role_binding_is_namespaced_and_records_owner():
    rb = build_role_binding("view", "devs", "team-a", owner="ops/devs-view")

    assert rb.kind == "RoleBinding"
    assert rb.metadata.namespace == "team-a"
    assert rb.metadata.name == "view-devs"
    assert rb.metadata.annotations == {OWNER_ANNOTATION: "ops/devs-view"}
    assert rb.role_ref.kind == "ClusterRole"


def test_synthesize_cluster_and_namespace_scopes():
    gp = make_group_permission(
        group_name="devs",
        cluster_permissions=["cluster-reader"],
        permissions=[
            NamespacePermission(cluster_role_name="edit", namespaces_allowed_regex="team-.*", allow_first=True),
        ],
    )

    desired = synthesize(gp.spec, NAMESPACES)

    assert desired == {
        BindingIdentity.cluster("cluster-reader", "devs"),
        BindingIdentity.namespaced("edit", "devs", "team-a"),
        BindingIdentity.namespaced("edit", "devs", "team-b"),
    }


def test_synthesize_deduplicates_repeated_entries():
    gp = make_group_permission(
        group_name="devs",
        cluster_permissions=["view", "view"],
        permissions=[
            NamespacePermission(cluster_role_name="edit", namespaces_allowed_regex="team-a", allow_first=True),
            NamespacePermission(cluster_role_name="edit", namespaces_allowed_regex="team-.*", allow_first=False),
        ],
    )

    desired = synthesize(gp.spec, NAMESPACES)

    assert len(desired) == 3
    assert sum(1 for i in desired if i.scope is BindingScope.NAMESPACE) == 2


def test_identity_equality_is_structural():
    assert BindingIdentity.cluster("view", "devs") == BindingIdentity(BindingScope.CLUSTER, "view", "devs", None)
    assert BindingIdentity.namespaced("view", "devs", "a") != BindingIdentity.namespaced("view", "devs", "b")
    assert len({BindingIdentity.cluster("view", "devs"), BindingIdentity.cluster("view", "devs")}) == 1


def test_build_binding_dispatches_on_scope():
    assert build_binding(BindingIdentity.cluster("view", "devs")).kind == "ClusterRoleBinding"
    assert build_binding(BindingIdentity.namespaced("view", "devs", "team-a")).kind == "RoleBinding"


def test_validate_spec_empty_group_fails_every_role():
    gp = make_group_permission(
        group_name="  ",
        cluster_permissions=["view"],
        permissions=[NamespacePermission(cluster_role_name="edit", allow_first=True)],
    )

    errors = validate_spec(gp.spec)

    assert [e.cluster_role_name for e in errors] == ["view", "edit"]


def test_validate_spec_reports_bad_regex_per_role():
    gp = make_group_permission(
        permissions=[
            NamespacePermission(cluster_role_name="edit", namespaces_allowed_regex="(", allow_first=True),
            NamespacePermission(cluster_role_name="view", namespaces_allowed_regex=".*", allow_first=True),
        ],
    )

    errors = validate_spec(gp.spec)

    assert len(errors) == 1
    assert errors[0].cluster_role_name == "edit"
