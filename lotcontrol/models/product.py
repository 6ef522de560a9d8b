import uuid
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field


class ProductCreate(SQLModel):
    name: str = Field(
        min_length=1,
        max_length=150,
        schema_extra={"examples": ["Botella PET x 1 L"]},
    )
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    active: bool = True


class ProductUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    active: Optional[bool] = None


class ProductRead(SQLModel):
    id: uuid.UUID
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    active: bool
    created_at: Optional[datetime] = None
