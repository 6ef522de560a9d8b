import uuid
from typing import List, Optional
from sqlmodel import SQLModel, Field


class PermissionRead(SQLModel):
    id: uuid.UUID
    name: str
    resource: str
    action: str
    display_name: str
    description: Optional[str] = None


class RoleCreate(SQLModel):
    name: str = Field(
        min_length=2,
        max_length=50,
        schema_extra={"examples": ["inspector"]},
    )
    display_name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    level: int = Field(
        ge=0,
        le=100,
        description="Authority ranking. Levels of 80 and above are protected."
    )
    permissions: List[str] = Field(
        default=[],
        description="Permission names. Example: ['records:read', 'records:create']"
    )


class RoleUpdate(SQLModel):
    """
    Protected roles (level >= 80) reject every update.
    `permissions`, when given, replaces the whole permission set.
    """
    display_name: Optional[str] = Field(
        default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    level: Optional[int] = Field(default=None, ge=0, le=100)
    permissions: Optional[List[str]] = None


class RoleRead(SQLModel):
    id: uuid.UUID
    name: str
    display_name: str
    description: Optional[str] = None
    level: int
    is_system: bool
    is_protected: bool
    permissions: List[str] = []
    user_count: int = 0
