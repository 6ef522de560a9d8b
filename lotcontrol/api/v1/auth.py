from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from lotcontrol.core.dependencies import get_user_service, get_current_principal
from lotcontrol.services.authorization import Principal
from lotcontrol.services.user import UserService, to_principal_read
from lotcontrol.models.auth import Token, TokenAccess, TokenRefresh
from lotcontrol.models.user import UserSignin, PrincipalRead


router = APIRouter()


@router.post(
    "/token",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Signin to get tokens",
    description="Returns an Access Token (short-lived) and Refresh Token (long-lived)."
)
def token(
    signin_data: UserSignin,
    service: UserService = Depends(get_user_service)
):
    """
    1. Verifies password.
    2. Checks if user is Active.
    3. Issues JWTs.
    """
    user = service.authenticate_user(signin_data.email, signin_data.password)

    if not user:
        # Same answer for unknown email and wrong password
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated. Please contact an administrator."
        )

    tokens = service.generate_tokens(user)

    logger.info(f"User logged in: {user.id}")

    return tokens


@router.post(
    "/refresh",
    response_model=TokenAccess,
    status_code=status.HTTP_200_OK,
    summary="Refresh Session",
    description="Exchanges a valid Refresh Token for a new Access Token."
)
def refresh_token(
    refresh_data: TokenRefresh,
    service: UserService = Depends(get_user_service)
):
    return TokenAccess(access_token=service.refresh_session(refresh_data.refresh_token))


@router.get(
    "/me",
    response_model=PrincipalRead,
    status_code=status.HTTP_200_OK,
    summary="Get current principal",
    description="Returns the roles, highest level and flattened permissions of the caller."
)
def get_me(
    principal: Principal = Depends(get_current_principal)
):
    return to_principal_read(principal)
