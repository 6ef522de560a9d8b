from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
from sqlmodel import Session
from pydantic import ValidationError

from lotcontrol.core.exceptions import AuthorizationError
from lotcontrol.db.core import get_session
from lotcontrol.services.audit import AuditService
from lotcontrol.services.authorization import Principal, can_mutate, permission_name
from lotcontrol.services.parameter_template import ParameterTemplateService
from lotcontrol.services.product import ProductService
from lotcontrol.services.record import RecordService
from lotcontrol.services.role import RoleService
from lotcontrol.services.specification import SpecificationService
from lotcontrol.services.user import UserService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def get_user_service(session: Session = Depends(get_session)) -> UserService:
    """Creates a UserService instance using the active DB session."""
    return UserService(session)


def get_parameter_template_service(session: Session = Depends(get_session)) -> ParameterTemplateService:
    return ParameterTemplateService(session=session)


def get_product_service(session: Session = Depends(get_session)) -> ProductService:
    return ProductService(session=session)


def get_specification_service(session: Session = Depends(get_session)) -> SpecificationService:
    return SpecificationService(session=session)


def get_record_service(session: Session = Depends(get_session)) -> RecordService:
    return RecordService(session=session)


def get_role_service(session: Session = Depends(get_session)) -> RoleService:
    return RoleService(session=session)


def get_audit_service(session: Session = Depends(get_session)) -> AuditService:
    return AuditService(session=session)


def get_current_principal(
    token: str = Depends(oauth2_scheme),
    service: UserService = Depends(get_user_service)
) -> Principal:
    """
    Validates the JWT token and resolves the acting principal once per
    request: roles and the flattened permission set.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token_data = service.verify_access_token(token)

        if not token_data:
            raise credentials_exception

    except (InvalidTokenError, ValidationError):
        raise credentials_exception

    user = service.get_user_by_id(token_data.user_id)

    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")

    return service.get_principal(user)


def permission_required(resource: str, action: str = "read"):
    """
    Router-level gate for read routes. Mutations are checked inside
    the services.
    """
    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not can_mutate(principal, resource, action):
            raise AuthorizationError(
                f"Missing permission '{permission_name(resource, action)}'.")
        return principal

    return dependency
