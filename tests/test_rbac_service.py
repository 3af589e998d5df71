"""
Tests for the permission gate and role management
"""
import pytest

from bankguard.core.errors import ConflictError, NotFoundError
from bankguard.models.role import Permission
from bankguard.services.rbac_service import DEFAULT_ROLE_PERMISSIONS, RBACService


@pytest.fixture
def rbac(audit):
    return RBACService(audit)


def test_check_grants_and_denies(db, rbac):
    rbac.create_role(db, "TELLER", [Permission.AI_QUERY])

    assert rbac.check(db, "u-1", "TELLER", Permission.AI_QUERY) is True
    assert rbac.check(db, "u-1", "TELLER", Permission.MANAGE_ROLES) is False


def test_unknown_role_has_no_permissions(db, rbac):
    assert rbac.check(db, "u-1", "GHOST", Permission.AI_QUERY) is False
    assert rbac.permissions_for(db, "GHOST") is None


def test_permission_set_is_immutable_snapshot(db, rbac):
    role = rbac.create_role(db, "TELLER", [Permission.AI_QUERY, Permission.AI_QUERY])
    snapshot = role.permission_set

    rbac.update_role(db, role.id, permissions=[Permission.VIEW_AUDIT])

    assert snapshot == frozenset({Permission.AI_QUERY})
    assert rbac.get_role_permissions(db, "TELLER") == [Permission.VIEW_AUDIT]
    assert rbac.check(db, "u-1", "TELLER", Permission.AI_QUERY) is False


def test_create_duplicate_role_conflicts(db, rbac):
    rbac.create_role(db, "TELLER", [])
    with pytest.raises(ConflictError):
        rbac.create_role(db, "TELLER", [Permission.AI_QUERY])


def test_rename_to_existing_role_conflicts(db, rbac):
    rbac.create_role(db, "TELLER", [])
    other = rbac.create_role(db, "AUDITOR", [])
    with pytest.raises(ConflictError):
        rbac.update_role(db, other.id, name="TELLER")


def test_update_keeps_unspecified_fields(db, rbac):
    role = rbac.create_role(db, "TELLER", [Permission.AI_QUERY], description="Branch staff")

    updated = rbac.update_role(db, role.id, name="SENIOR_TELLER")

    assert updated.name == "SENIOR_TELLER"
    assert updated.description == "Branch staff"
    assert updated.permission_set == frozenset({Permission.AI_QUERY})


def test_lookup_and_delete(db, rbac):
    role = rbac.create_role(db, "TELLER", [Permission.AI_QUERY])

    assert rbac.get_role(db, role.id).name == "TELLER"
    assert rbac.get_role_by_name(db, "TELLER").id == role.id
    assert [r.name for r in rbac.list_roles(db)] == ["TELLER"]

    rbac.delete_role(db, role.id)
    with pytest.raises(NotFoundError):
        rbac.get_role(db, role.id)
    with pytest.raises(NotFoundError):
        rbac.get_role_by_name(db, "TELLER")
    with pytest.raises(NotFoundError):
        rbac.delete_role(db, role.id)


def test_role_changes_are_audited(db, rbac, audit):
    role = rbac.create_role(db, "TELLER", [Permission.AI_QUERY], actor="admin-1", ip_address="10.0.0.1")
    rbac.update_role(db, role.id, permissions=[], actor="admin-1")
    rbac.delete_role(db, role.id, actor="admin-2")
    audit.flush()

    records = audit.by_resource(db, "ROLE", str(role.id))
    assert sorted(r.action for r in records) == ["CREATE_ROLE", "DELETE_ROLE", "UPDATE_ROLE"]
    assert {r.user_id for r in records} == {"admin-1", "admin-2"}


def test_seed_default_roles_only_into_empty_table(db, rbac):
    assert rbac.seed_default_roles(db) == len(DEFAULT_ROLE_PERMISSIONS)
    assert rbac.seed_default_roles(db) == 0
    assert rbac.check(db, "u-1", "ADMIN", Permission.MANAGE_ROLES) is True
    assert rbac.check(db, "u-1", "CUSTOMER", Permission.FRAUD_REVIEW) is False
