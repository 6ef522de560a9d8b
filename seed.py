from loguru import logger
from sqlmodel import Session, select
from lotcontrol.core.config import settings
from lotcontrol.db.core import engine, init_db
from lotcontrol.db.schema import (
    ParameterKind, ParameterTemplate, Permission, Role, RolePermissionLink, User
)
from lotcontrol.services.authorization import SYSTEM_PERMISSIONS, permission_name
from lotcontrol.services.password import get_password_hash


ACTION_LABELS = {
    "read": "View",
    "create": "Create",
    "update": "Edit",
    "delete": "Delete",
    "approve": "Approve/Reject",
}

# Roles and the permission names they get. "*" means every permission.
SYSTEM_ROLES = {
    "administrador": {
        "display_name": "Administrador",
        "description": "Full access to the system.",
        "level": 100,
        "permissions": ["*"],
    },
    "supervisor": {
        "display_name": "Supervisor de Calidad",
        "description": "Approves or rejects lots and manages specifications.",
        "level": 80,
        "permissions": [
            "parameters:read", "parameters:create", "parameters:update",
            "specifications:read", "specifications:create",
            "specifications:update", "specifications:delete",
            "products:read", "products:create", "products:update",
            "records:read", "records:create", "records:update",
            "records:delete", "records:approve",
            "controls:read", "controls:create",
            "users:read", "audit:read",
        ],
    },
    "trabajador": {
        "display_name": "Trabajador",
        "description": "Registers lots and captures measurements.",
        "level": 50,
        "permissions": [
            "parameters:read", "specifications:read", "products:read",
            "records:read", "records:create", "records:update",
            "controls:read", "controls:create",
        ],
    },
}

REFERENCE_TEMPLATES = [
    {"name": "COLOR", "kind": ParameterKind.TEXT,
     "default_value": "Transparente", "description": "Visual color check"},
    {"name": "PESO", "kind": ParameterKind.RANGE,
     "min_range": 0, "max_range": 100, "unit": "kg"},
    {"name": "GRAMAJE", "kind": ParameterKind.RANGE,
     "min_range": 0, "max_range": 1000, "unit": "g"},
    {"name": "ANCHO", "kind": ParameterKind.RANGE,
     "min_range": 0, "max_range": 100, "unit": "cm"},
    {"name": "LARGO", "kind": ParameterKind.RANGE,
     "min_range": 0, "max_range": 100, "unit": "cm"},
    {"name": "DIÁMETRO EXTERNO", "kind": ParameterKind.RANGE,
     "min_range": 0, "max_range": 50, "unit": "mm"},
    {"name": "N° PUENTES DE UNIÓN", "kind": ParameterKind.NUMERIC,
     "unit": "unidades"},
]


def seed_permissions(session: Session) -> dict[str, Permission]:
    """Creates permissions if they don't exist. Returns a dict map of name -> Permission."""
    logger.info("--- Seeding Permissions ---")
    perm_map = {}

    for resource, actions in SYSTEM_PERMISSIONS.items():
        for action in actions:
            name = permission_name(resource, action)
            permission = session.exec(
                select(Permission).where(Permission.name == name)).first()
            if not permission:
                permission = Permission(
                    name=name,
                    resource=resource,
                    action=action,
                    display_name=f"{ACTION_LABELS.get(action, action.title())} {resource.title()}",
                )
                session.add(permission)
                logger.info(f"Created Permission: {name}")

            session.flush()
            perm_map[name] = permission

    return perm_map


def seed_roles(session: Session, perm_map: dict[str, Permission]) -> dict[str, Role]:
    """Creates system roles and syncs their permission links."""
    logger.info("--- Seeding Roles ---")
    role_map = {}

    for role_name, config in SYSTEM_ROLES.items():
        role = session.exec(select(Role).where(Role.name == role_name)).first()

        if not role:
            role = Role(
                name=role_name,
                display_name=config["display_name"],
                description=config["description"],
                level=config["level"],
                is_system=True,
            )
            session.add(role)
            session.flush()
            logger.info(f"Created Role: {role_name}")

        names = perm_map.keys() if config["permissions"] == [
            "*"] else config["permissions"]
        target_perm_ids = {perm_map[n].id for n in names if n in perm_map}

        current_links = session.exec(select(RolePermissionLink).where(
            RolePermissionLink.role_id == role.id)).all()
        existing_perm_ids = {link.permission_id for link in current_links}

        for perm_id in target_perm_ids - existing_perm_ids:
            session.add(RolePermissionLink(
                role_id=role.id, permission_id=perm_id))
        if target_perm_ids - existing_perm_ids:
            logger.info(
                f"  + {len(target_perm_ids - existing_perm_ids)} permission(s) added to {role_name}")

        role_map[role_name] = role

    return role_map


def seed_admin(session: Session, role_map: dict[str, Role]):
    """Creates the bootstrap administrator from ADMIN_EMAIL / ADMIN_PASSWORD."""
    logger.info("--- Seeding Administrator ---")
    if not settings.admin_password:
        logger.warning("ADMIN_PASSWORD not set; skipping administrator account.")
        return

    email = settings.admin_email.lower()
    if session.exec(select(User).where(User.email == email)).first():
        logger.info(f"Existing administrator: {email}")
        return

    session.add(User(
        email=email,
        full_name=settings.admin_full_name,
        hashed_password=get_password_hash(settings.admin_password),
        is_active=True,
        roles=[role_map["administrador"]],
    ))
    logger.info(f"Created administrator: {email}")


def seed_templates(session: Session):
    logger.info("--- Seeding Parameter Templates ---")

    for data in REFERENCE_TEMPLATES:
        existing = session.exec(select(ParameterTemplate).where(
            ParameterTemplate.name == data["name"])).first()
        if existing:
            continue
        session.add(ParameterTemplate(**data))
        logger.info(f"Created Parameter Template: {data['name']}")


def main():
    init_db()

    with Session(engine) as session:
        try:
            perm_map = seed_permissions(session)
            role_map = seed_roles(session, perm_map)
            seed_admin(session, role_map)
            seed_templates(session)

            session.commit()
            logger.info("Database seeding completed successfully.")

        except Exception as e:
            session.rollback()
            logger.error(f"Seeding failed: {e}")
            raise e


if __name__ == "__main__":
    main()
