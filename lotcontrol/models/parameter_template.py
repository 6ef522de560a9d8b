import uuid
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field
from lotcontrol.db.schema import ParameterKind

# ==========================================
# Create Model
# ==========================================


class ParameterTemplateCreate(SQLModel):
    """
    Payload for a new catalog entry.

    Range templates need both bounds with min_range < max_range; the
    service rejects anything else with a validation error naming the field.
    """
    name: str = Field(
        max_length=100,
        schema_extra={"examples": ["PESO"]},
        description="Unique catalog name."
    )
    description: Optional[str] = Field(default=None, max_length=500)
    kind: ParameterKind = Field(
        description="One of 'range', 'numeric', 'text'."
    )
    default_value: Optional[str] = Field(
        default=None,
        max_length=255,
        schema_extra={"examples": ["Transparente"]},
    )
    min_range: Optional[float] = Field(default=None)
    max_range: Optional[float] = Field(default=None)
    unit: Optional[str] = Field(default=None, max_length=20)
    active: bool = Field(default=True)

# ==========================================
# Update Model
# ==========================================


class ParameterTemplateUpdate(SQLModel):
    """
    Partial update. Bounds are re-validated against the resulting kind.
    Bindings already made from this template are not affected.
    """
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    kind: Optional[ParameterKind] = None
    default_value: Optional[str] = Field(default=None, max_length=255)
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=20)
    active: Optional[bool] = None

# ==========================================
# Read Model
# ==========================================


class ParameterTemplateRead(SQLModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    kind: ParameterKind
    default_value: Optional[str] = None
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    unit: Optional[str] = None
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
