import uuid
from typing import List, Optional
from sqlmodel import SQLModel, Field
from pydantic import EmailStr, StringConstraints
from typing_extensions import Annotated


class RoleSummary(SQLModel):
    id: uuid.UUID
    name: str
    level: int


class UserRead(SQLModel):
    id: uuid.UUID
    email: str
    full_name: str
    is_active: bool
    two_factor_enabled: bool
    roles: List[RoleSummary] = []


class PrincipalRead(SQLModel):
    user_id: uuid.UUID
    email: str
    roles: List[str]
    highest_level: int
    permissions: List[str]


class UserSignin(SQLModel):
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(
        description="Registered email address of the user.",
        max_length=255
    )
    password: str = Field(
        min_length=8,
        max_length=72,
        description="Plain text password."
    )


class UserCreate(SQLModel):
    """
    DTO for creating an operator account. Roles are given by name.
    """
    full_name: str = Field(
        min_length=1,
        max_length=100,
        description="User's display name."
    )
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(
        description="Unique email address for signin.",
        max_length=255
    )
    password: str = Field(
        min_length=8,
        max_length=72,
        description="Plain text password."
    )
    roles: List[str] = Field(
        default=[],
        description="Role names. Example: ['trabajador']"
    )


class UserRolesUpdate(SQLModel):
    roles: List[str] = Field(description="Replaces the user's role set.")


class UserUpdate(SQLModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)
    is_active: Optional[bool] = None
