import uuid
from datetime import datetime
from typing import List, Optional
from sqlmodel import SQLModel, Field
from lotcontrol.db.schema import RecordStatus

# ==========================================
# Create Model
# ==========================================


class RecordCreate(SQLModel):
    """
    Register a new lot. The record starts as 'pending' and is owned by the
    acting principal.
    """
    product_id: uuid.UUID
    internal_lot: str = Field(
        min_length=1,
        max_length=100,
        schema_extra={"examples": ["TPT45-2024-001"]},
        description="Globally unique, case-sensitive lot code."
    )
    supplier_lot: Optional[str] = Field(default=None, max_length=100)
    quantity: float = Field(description="Must be greater than zero.")
    registration_date: Optional[datetime] = Field(
        default=None, description="Defaults to now.")
    expiration_date: Optional[datetime] = None
    observations: Optional[str] = Field(default=None, max_length=2000)

# ==========================================
# Update Model
# ==========================================


class RecordUpdate(SQLModel):
    """
    Partial update of a pending record. Status is not editable here; use
    the approve/reject transitions.
    """
    product_id: Optional[uuid.UUID] = None
    internal_lot: Optional[str] = Field(
        default=None, min_length=1, max_length=100)
    supplier_lot: Optional[str] = Field(default=None, max_length=100)
    quantity: Optional[float] = None
    registration_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    observations: Optional[str] = Field(default=None, max_length=2000)


class RecordReject(SQLModel):
    reason: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Appended to the record's observations."
    )

# ==========================================
# Read Model
# ==========================================


class RecordRead(SQLModel):
    id: uuid.UUID
    product_id: uuid.UUID
    internal_lot: str
    supplier_lot: Optional[str] = None
    quantity: float
    registration_date: datetime
    expiration_date: Optional[datetime] = None
    status: RecordStatus
    user_id: uuid.UUID
    approved_by: Optional[uuid.UUID] = None
    approval_date: Optional[datetime] = None
    observations: Optional[str] = None
    controls_submitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecordPage(SQLModel):
    items: List[RecordRead]
    total: int
    page: int
    limit: int
