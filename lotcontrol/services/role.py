import uuid
from typing import List, Optional
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, func, col

from lotcontrol.core.audit import AuditTrailRecorder
from lotcontrol.core.exceptions import (
    AuthorizationError, ConflictError, InternalError, NotFoundError, ValidationError
)
from lotcontrol.db.schema import Permission, Role, UserRoleLink
from lotcontrol.models.role import PermissionRead, RoleCreate, RoleUpdate, RoleRead
from lotcontrol.services.authorization import (
    Principal, ensure_role_not_protected, is_protected_role,
    require_permission
)


class RoleService:
    """
    Role management. Protected roles (level >= admin threshold) are
    read-only here whatever the caller's own grants are.
    """

    def __init__(self, session: Session, audit: Optional[AuditTrailRecorder] = None):
        self.session = session
        self.audit = audit or AuditTrailRecorder(session.get_bind())

    def _get_role(self, role_id: uuid.UUID) -> Role:
        role = self.session.get(Role, role_id)
        if not role:
            raise NotFoundError("Role", role_id)
        return role

    def _user_count(self, role_id: uuid.UUID) -> int:
        return self.session.exec(
            select(func.count()).select_from(UserRoleLink).where(
                UserRoleLink.role_id == role_id)
        ).one()

    def _to_read(self, role: Role) -> RoleRead:
        return RoleRead(
            id=role.id,
            name=role.name,
            display_name=role.display_name,
            description=role.description,
            level=role.level,
            is_system=role.is_system,
            is_protected=is_protected_role(role),
            permissions=sorted(p.name for p in role.permissions),
            user_count=self._user_count(role.id),
        )

    def _resolve_permissions(self, names: List[str]) -> List[Permission]:
        names = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
        if not names:
            return []

        permissions = self.session.exec(
            select(Permission).where(col(Permission.name).in_(names))).all()
        missing = set(names) - {p.name for p in permissions}
        if missing:
            raise ValidationError(
                f"Unknown permission(s): {', '.join(sorted(missing))}.", field="permissions")
        return list(permissions)

    def _check_level(self, principal: Principal, level: int) -> None:
        if level > principal.highest_level:
            raise AuthorizationError(
                f"Cannot set a role level ({level}) above your own ({principal.highest_level}).")

    def _commit(self, role: Role, action: str) -> None:
        try:
            self.session.add(role)
            self.session.commit()
            self.session.refresh(role)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                f"Role '{role.name}' already exists.", field="name")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Role {action} failed: {e}")
            raise InternalError(f"Could not {action} role.")

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def list_permissions(self) -> List[PermissionRead]:
        results = self.session.exec(
            select(Permission).order_by(Permission.resource.asc(), Permission.action.asc())).all()
        return [PermissionRead.model_validate(p) for p in results]

    def list_roles(self) -> List[RoleRead]:
        results = self.session.exec(
            select(Role).order_by(Role.level.desc(), Role.name.asc())).all()
        return [self._to_read(r) for r in results]

    def get_role(self, role_id: uuid.UUID) -> RoleRead:
        return self._to_read(self._get_role(role_id))

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def create_role(self, principal: Principal, data: RoleCreate) -> RoleRead:
        require_permission(principal, "roles", "create")

        name = data.name.strip().lower()
        if self.session.exec(select(Role).where(Role.name == name)).first():
            raise ConflictError(f"Role '{name}' already exists.", field="name")
        self._check_level(principal, data.level)

        role = Role(
            name=name,
            display_name=data.display_name.strip(),
            description=data.description,
            level=data.level,
            is_system=False,
            permissions=self._resolve_permissions(data.permissions),
        )
        self._commit(role, "create")

        self.audit.append(
            principal.user_id,
            action="role.created",
            resource="roles",
            resource_id=role.id,
            details={"role_id": role.id, "name": role.name, "level": role.level,
                     "permissions": sorted(p.name for p in role.permissions)},
        )
        return self._to_read(role)

    def update_role(self, principal: Principal, role_id: uuid.UUID, data: RoleUpdate) -> RoleRead:
        require_permission(principal, "roles", "update")

        role = self._get_role(role_id)
        ensure_role_not_protected(role, "modify")

        updates = data.model_dump(exclude_unset=True)
        if updates.get("level") is not None:
            self._check_level(principal, updates["level"])

        changes = {}
        for key in ("display_name", "description", "level"):
            if key in updates and updates[key] is not None and updates[key] != getattr(role, key):
                changes[key] = {"old": getattr(role, key), "new": updates[key]}
                setattr(role, key, updates[key])

        if updates.get("permissions") is not None:
            permissions = self._resolve_permissions(updates["permissions"])
            old_names = sorted(p.name for p in role.permissions)
            new_names = sorted(p.name for p in permissions)
            if old_names != new_names:
                changes["permissions"] = {"old": old_names, "new": new_names}
                role.permissions = permissions

        self._commit(role, "update")

        self.audit.append(
            principal.user_id,
            action="role.updated",
            resource="roles",
            resource_id=role.id,
            details={"role_id": role.id, "name": role.name, "changes": changes},
        )
        return self._to_read(role)

    def delete_role(self, principal: Principal, role_id: uuid.UUID):
        require_permission(principal, "roles", "delete")

        role = self._get_role(role_id)
        ensure_role_not_protected(role, "delete")

        holders = self._user_count(role.id)
        if holders:
            raise ConflictError(
                f"Role '{role.name}' is still assigned to {holders} user(s).")

        snapshot = {"role_id": role.id, "name": role.name, "level": role.level}
        try:
            role.permissions = []
            self.session.delete(role)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Role deletion failed: {e}")
            raise InternalError("Could not delete role.")

        self.audit.append(
            principal.user_id,
            action="role.deleted",
            resource="roles",
            resource_id=role_id,
            details=snapshot,
        )
        logger.info(f"Role deleted: {snapshot['name']}")
        return {"message": "Role deleted successfully."}
