import pytest
from sqlmodel import select

from lotcontrol.core.exceptions import (
    AuthorizationError, ConflictError, ProtectedResourceError, ValidationError
)
from lotcontrol.db.schema import Role, User
from lotcontrol.models.role import RoleCreate, RoleUpdate
from lotcontrol.models.user import UserCreate, UserRolesUpdate, UserUpdate
from lotcontrol.services.authorization import Principal
from lotcontrol.services.role import RoleService
from lotcontrol.services.user import UserService


@pytest.fixture()
def role_service(session):
    return RoleService(session)


@pytest.fixture()
def user_service(session):
    return UserService(session)


@pytest.fixture()
def jefe_planta(session, roles):
    role = Role(name="jefe_planta", display_name="Jefe de Planta", level=90)
    session.add(role)
    session.commit()
    session.refresh(role)
    return role


# ── Roles ────────────────────────────────────────────────────────────────


def test_level_90_role_cannot_be_deleted_even_by_level_100(role_service, session, admin, jefe_planta):
    with pytest.raises(ProtectedResourceError):
        role_service.delete_role(admin, jefe_planta.id)

    assert session.get(Role, jefe_planta.id) is not None


def test_protected_role_cannot_be_edited(role_service, admin, jefe_planta):
    with pytest.raises(ProtectedResourceError):
        role_service.update_role(admin, jefe_planta.id, RoleUpdate(permissions=["records:read"]))


def test_create_update_delete_custom_role(role_service, admin):
    role = role_service.create_role(admin, RoleCreate(
        name="Inspector", display_name="Inspector", level=40,
        permissions=["records:read", "controls:create"]))

    assert role.name == "inspector"
    assert role.permissions == ["controls:create", "records:read"]
    assert role.is_protected is False

    updated = role_service.update_role(admin, role.id, RoleUpdate(permissions=["records:read"]))
    assert updated.permissions == ["records:read"]

    role_service.delete_role(admin, role.id)
    assert [r.name for r in role_service.list_roles()] == ["administrador", "supervisor", "trabajador"]


def test_unknown_permission_names_are_rejected(role_service, admin):
    with pytest.raises(ValidationError) as exc:
        role_service.create_role(admin, RoleCreate(
            name="inspector", display_name="Inspector", level=40, permissions=["records:fly"]))
    assert exc.value.field == "permissions"


def test_role_held_by_users_cannot_be_deleted(role_service, session, admin, make_user):
    role = role_service.create_role(admin, RoleCreate(name="inspector", display_name="Inspector", level=40))
    user = make_user("inspector@lotcontrol.io")
    user.roles = [session.get(Role, role.id)]
    session.add(user)
    session.commit()

    with pytest.raises(ConflictError):
        role_service.delete_role(admin, role.id)
    assert role_service.get_role(role.id).user_count == 1


def test_role_management_requires_permission(role_service, worker):
    with pytest.raises(AuthorizationError):
        role_service.create_role(worker, RoleCreate(name="inspector", display_name="Inspector", level=10))


def test_role_level_cannot_exceed_creator(role_service, supervisor):
    with pytest.raises(AuthorizationError):
        role_service.create_role(supervisor, RoleCreate(name="jefe", display_name="Jefe", level=95))


def test_permission_catalog(role_service, roles):
    names = [p.name for p in role_service.list_permissions()]
    assert "records:approve" in names
    assert "audit:read" in names


# ── Users ────────────────────────────────────────────────────────────────


def test_create_user_with_roles(user_service, admin):
    user = user_service.create_user(admin, UserCreate(
        full_name="Ana Torres", email="Ana@LotControl.io", password="ClaveSegura1",
        roles=["trabajador"]))

    assert user.email == "ana@lotcontrol.io"
    assert [r.name for r in user.roles] == ["trabajador"]
    assert user_service.authenticate_user("ana@lotcontrol.io", "ClaveSegura1") is not None
    assert user_service.authenticate_user("ana@lotcontrol.io", "incorrecta") is None


def test_duplicate_email_conflicts(user_service, admin, worker_user):
    with pytest.raises(ConflictError):
        user_service.create_user(admin, UserCreate(
            full_name="Otro", email=worker_user.email, password="ClaveSegura1"))


def test_unknown_role_name(user_service, admin):
    with pytest.raises(ValidationError) as exc:
        user_service.create_user(admin, UserCreate(
            full_name="Otro", email="otro@lotcontrol.io", password="ClaveSegura1", roles=["gerente"]))
    assert exc.value.field == "roles"


def test_self_deletion_is_refused(user_service, admin):
    with pytest.raises(ConflictError):
        user_service.delete_user(admin, admin.user_id)


def test_protected_user_cannot_be_deleted(user_service, session, admin, supervisor_user):
    with pytest.raises(ProtectedResourceError):
        user_service.delete_user(admin, supervisor_user.id)
    assert session.get(User, supervisor_user.id) is not None


def test_unprotected_user_can_be_deleted(user_service, session, admin, worker_user):
    user_service.delete_user(admin, worker_user.id)

    session.expire_all()
    assert session.exec(select(User).where(User.email == "operario@lotcontrol.io")).first() is None


def test_protected_user_cannot_be_demoted(user_service, admin, supervisor_user):
    with pytest.raises(ProtectedResourceError):
        user_service.update_roles(admin, supervisor_user.id, UserRolesUpdate(roles=["trabajador"]))


def test_promoting_an_unprotected_user(user_service, admin, worker_user):
    user = user_service.update_roles(admin, worker_user.id, UserRolesUpdate(roles=["supervisor"]))
    assert [r.name for r in user.roles] == ["supervisor"]


def test_cannot_grant_role_above_own_level(user_service, make_user, worker_user):
    manager = make_user("gestor@lotcontrol.io")
    manager_principal = Principal(
        user_id=manager.id, email=manager.email,
        permissions=frozenset({"users:update"}))

    with pytest.raises(AuthorizationError):
        user_service.update_roles(manager_principal, worker_user.id, UserRolesUpdate(roles=["administrador"]))


def test_disable_two_factor(user_service, admin, make_user):
    target = make_user("doble@lotcontrol.io", ["trabajador"], two_factor=True)

    user = user_service.disable_two_factor(admin, target.id)
    assert user.two_factor_enabled is False

    with pytest.raises(ConflictError):
        user_service.disable_two_factor(admin, target.id)


def test_two_factor_of_protected_user_cannot_be_removed(user_service, admin, make_user):
    target = make_user("jefa@lotcontrol.io", ["supervisor"], two_factor=True)

    with pytest.raises(ProtectedResourceError):
        user_service.disable_two_factor(admin, target.id)


def test_disable_two_factor_requires_admin(user_service, worker, make_user):
    target = make_user("doble@lotcontrol.io", ["trabajador"], two_factor=True)

    with pytest.raises(AuthorizationError):
        user_service.disable_two_factor(worker, target.id)


def test_deactivate_user(user_service, admin, worker_user):
    user = user_service.update_user(admin, worker_user.id, UserUpdate(is_active=False))
    assert user.is_active is False
    assert user_service.validate_user(worker_user.id) is None
