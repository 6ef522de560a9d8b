from typing import List, Optional
import uuid
from datetime import datetime, timedelta

import jwt
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, or_, col
from fastapi import HTTPException, status

from lotcontrol.core.audit import AuditTrailRecorder
from lotcontrol.core.config import settings
from lotcontrol.core.exceptions import (
    AuthorizationError, ConflictError, InternalError, NotFoundError, ValidationError
)
from lotcontrol.db.schema import Role, User
from lotcontrol.models.auth import Token, TokenData
from lotcontrol.models.user import (
    PrincipalRead, RoleSummary, UserCreate, UserRead, UserRolesUpdate, UserUpdate
)
from lotcontrol.services.authorization import (
    Principal, ensure_user_not_protected, require_admin, require_permission
)
from .password import get_password_hash, verify_password


def to_user_read(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        is_active=user.is_active,
        two_factor_enabled=user.two_factor_enabled,
        roles=[RoleSummary(id=r.id, name=r.name, level=r.level)
               for r in sorted(user.roles, key=lambda r: -r.level)],
    )


def to_principal_read(principal: Principal) -> PrincipalRead:
    return PrincipalRead(
        user_id=principal.user_id,
        email=principal.email,
        roles=[role.name for role in principal.roles],
        highest_level=principal.highest_level,
        permissions=sorted(principal.permissions),
    )


class UserService:
    ALGORITHM = "HS256"

    def __init__(self, session: Session, audit: Optional[AuditTrailRecorder] = None):
        self.session = session
        self.audit = audit or AuditTrailRecorder(session.get_bind())

    def _create_jwt(self, subject: str, expires_delta: timedelta, type: str) -> str:
        """Helper to sign JWTs with specific types."""
        to_encode = {
            "sub": str(subject),
            "exp": datetime.utcnow() + expires_delta,
            "type": type
        }
        return jwt.encode(to_encode, settings.secret_key, algorithm=self.ALGORITHM)

    def _decode_jwt(self, token: str, expected_type: str) -> Optional[TokenData]:
        try:
            payload = jwt.decode(token, settings.secret_key,
                                 algorithms=[self.ALGORITHM])
            user_id = payload.get("sub")
            token_type = payload.get("type")

            if not user_id or token_type != expected_type:
                return None

            return TokenData(user_id=uuid.UUID(user_id))
        except (jwt.PyJWTError, ValueError):
            return None

    def _get_user(self, user_id: uuid.UUID) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User", user_id)
        return user

    def _resolve_roles(self, names: List[str]) -> List[Role]:
        names = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
        if not names:
            return []

        roles = self.session.exec(
            select(Role).where(col(Role.name).in_(names))).all()
        missing = set(names) - {r.name for r in roles}
        if missing:
            raise ValidationError(
                f"Unknown role(s): {', '.join(sorted(missing))}.", field="roles")
        return list(roles)

    def _check_grantable(self, principal: Principal, roles: List[Role]) -> None:
        """Nobody hands out more authority than they hold."""
        for role in roles:
            if role.level > principal.highest_level:
                raise AuthorizationError(
                    f"Cannot grant role '{role.name}' (level {role.level}) above your own level.")

    def _commit(self, user: User, action: str) -> None:
        try:
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                f"A user with email '{user.email}' already exists.", field="email")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"User {action} failed: {e}")
            raise InternalError(f"Could not {action} user.")

    # ==========================================================================
    # AUTHENTICATION
    # ==========================================================================

    def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        statement = select(User).where(User.id == user_id)
        return self.session.exec(statement).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        statement = select(User).where(User.email == email.lower())
        return self.session.exec(statement).first()

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """Verify email and password hash."""
        user = self.get_user_by_email(email)
        if not user:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    def generate_access_token(self, user: User) -> str:
        return self._create_jwt(
            subject=user.id,
            expires_delta=timedelta(
                minutes=settings.access_token_expire_minutes),
            type="access"
        )

    def generate_refresh_token(self, user: User) -> str:
        return self._create_jwt(
            subject=user.id,
            expires_delta=timedelta(
                minutes=settings.refresh_token_expire_minutes),
            type="refresh"
        )

    def generate_tokens(self, user: User) -> Token:
        return Token(
            access_token=self.generate_access_token(user),
            refresh_token=self.generate_refresh_token(user),
            token_type="bearer"
        )

    def verify_access_token(self, token: str) -> Optional[TokenData]:
        return self._decode_jwt(token, "access")

    def verify_refresh_token(self, token: str) -> Optional[TokenData]:
        return self._decode_jwt(token, "refresh")

    def validate_user(self, user_id: uuid.UUID) -> Optional[User]:
        """Retrieves user and checks is_active flag."""
        user = self.get_user_by_id(user_id)
        if not user or not user.is_active:
            return None
        return user

    def refresh_session(self, refresh_token: str) -> str:
        """
        Exchange a valid refresh token for a new access token.
        Strictly validates the user state before issuing.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        token_data = self.verify_refresh_token(refresh_token)
        if not token_data:
            raise credentials_exception

        user = self.validate_user(token_data.user_id)
        if not user:
            raise credentials_exception

        return self.generate_access_token(user)

    def get_principal(self, user: User) -> Principal:
        return Principal.from_user(user)

    # ==========================================================================
    # USER MANAGEMENT
    # ==========================================================================

    def list_users(self, query: Optional[str] = None) -> List[UserRead]:
        statement = select(User)
        if query:
            search_fmt = f"%{query}%"
            statement = statement.where(
                or_(
                    col(User.email).ilike(search_fmt),
                    col(User.full_name).ilike(search_fmt)
                )
            )
        results = self.session.exec(statement.order_by(User.email.asc())).all()
        return [to_user_read(u) for u in results]

    def get_user(self, user_id: uuid.UUID) -> UserRead:
        return to_user_read(self._get_user(user_id))

    def create_user(self, principal: Principal, user_in: UserCreate) -> UserRead:
        require_permission(principal, "users", "create")

        email = str(user_in.email).lower()
        if self.get_user_by_email(email):
            raise ConflictError(
                f"A user with email '{email}' already exists.", field="email")

        roles = self._resolve_roles(user_in.roles)
        self._check_grantable(principal, roles)

        user = User(
            email=email,
            full_name=user_in.full_name.strip(),
            hashed_password=get_password_hash(user_in.password),
            is_active=True,
            roles=roles,
        )
        self._commit(user, "create")

        self.audit.append(
            principal.user_id,
            action="user.created",
            resource="users",
            resource_id=user.id,
            details={"user_id": user.id, "email": user.email,
                     "roles": [r.name for r in roles]},
        )
        logger.info(f"User created: {user.email}")
        return to_user_read(user)

    def update_user(self, principal: Principal, user_id: uuid.UUID, data: UserUpdate) -> UserRead:
        require_permission(principal, "users", "update")

        user = self._get_user(user_id)
        updates = data.model_dump(exclude_unset=True)
        changes = {}

        if updates.get("full_name"):
            changes["full_name"] = {"old": user.full_name,
                                    "new": updates["full_name"].strip()}
            user.full_name = updates["full_name"].strip()
        if updates.get("password"):
            changes["password"] = "changed"
            user.hashed_password = get_password_hash(updates["password"])
        if updates.get("is_active") is not None and updates["is_active"] != user.is_active:
            if not updates["is_active"]:
                ensure_user_not_protected(principal, user, "deactivate")
            changes["is_active"] = {"old": user.is_active,
                                    "new": updates["is_active"]}
            user.is_active = updates["is_active"]

        self._commit(user, "update")

        self.audit.append(
            principal.user_id,
            action="user.updated",
            resource="users",
            resource_id=user.id,
            details={"user_id": user.id, "changes": changes},
        )
        return to_user_read(user)

    def update_roles(self, principal: Principal, user_id: uuid.UUID, data: UserRolesUpdate) -> UserRead:
        """Replaces the role set. Changing a protected user's roles is a demotion."""
        require_permission(principal, "users", "update")

        user = self._get_user(user_id)
        roles = self._resolve_roles(data.roles)

        old_names = sorted(r.name for r in user.roles)
        new_names = sorted(r.name for r in roles)
        if old_names == new_names:
            return to_user_read(user)

        ensure_user_not_protected(principal, user, "change the roles of")
        self._check_grantable(
            principal, [r for r in roles if r.name not in old_names])

        user.roles = roles
        self._commit(user, "update")

        self.audit.append(
            principal.user_id,
            action="user.roles_updated",
            resource="users",
            resource_id=user.id,
            details={"user_id": user.id, "email": user.email,
                     "changes": {"roles": {"old": old_names, "new": new_names}}},
        )
        logger.info(f"Roles of {user.email} changed: {old_names} -> {new_names}")
        return to_user_read(user)

    def delete_user(self, principal: Principal, user_id: uuid.UUID):
        require_permission(principal, "users", "delete")

        user = self._get_user(user_id)
        if user.id == principal.user_id:
            raise ConflictError("You cannot delete your own account.")
        ensure_user_not_protected(principal, user, "delete")

        snapshot = {"user_id": user.id, "email": user.email,
                    "roles": [r.name for r in user.roles]}
        try:
            user.roles = []
            self.session.delete(user)
            self.session.commit()
        except IntegrityError:
            # Records and approvals keep pointing at the user
            self.session.rollback()
            raise ConflictError(
                f"User '{snapshot['email']}' owns records; deactivate the account instead.")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"User deletion failed: {e}")
            raise InternalError("Could not delete user.")

        self.audit.append(
            principal.user_id,
            action="user.deleted",
            resource="users",
            resource_id=user_id,
            details=snapshot,
        )
        return {"message": "User deleted successfully."}

    def disable_two_factor(self, principal: Principal, user_id: uuid.UUID) -> UserRead:
        require_admin(principal)

        user = self._get_user(user_id)
        ensure_user_not_protected(
            principal, user, "remove the second factor of")
        if not user.two_factor_enabled:
            raise ConflictError(
                f"Two-factor authentication is not enabled for '{user.email}'.")

        user.two_factor_enabled = False
        user.two_factor_secret = None
        self._commit(user, "update")

        self.audit.append(
            principal.user_id,
            action="user.two_factor_disabled",
            resource="users",
            resource_id=user.id,
            details={"user_id": user.id, "email": user.email,
                     "changes": {"two_factor_enabled": {"old": True, "new": False}}},
        )
        logger.warning(f"Two-factor authentication removed for {user.email}")
        return to_user_read(user)
