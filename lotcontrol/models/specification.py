import uuid
from datetime import datetime
from typing import List, Optional
from sqlmodel import SQLModel, Field
from lotcontrol.db.schema import ParameterKind


class SpecificationBind(SQLModel):
    """
    Attach a catalog template to a product.

    The template's kind, unit, default value and range are copied in; any
    field given here overrides the copied value for this product only.
    """
    template_id: uuid.UUID = Field(description="The catalog template to bind.")
    expected_value: Optional[str] = Field(default=None, max_length=255)
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=20)
    required: bool = True


class SpecificationCreate(SQLModel):
    """
    An ad-hoc specification that does not come from the catalog.
    """
    name: str = Field(max_length=100)
    kind: ParameterKind
    expected_value: Optional[str] = Field(default=None, max_length=255)
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=20)
    required: bool = True


class SpecificationUpdate(SQLModel):
    name: Optional[str] = Field(default=None, max_length=100)
    kind: Optional[ParameterKind] = None
    expected_value: Optional[str] = Field(default=None, max_length=255)
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=20)
    required: Optional[bool] = None
    active: Optional[bool] = None


class SpecificationRead(SQLModel):
    id: uuid.UUID
    product_id: uuid.UUID
    template_id: Optional[uuid.UUID] = None
    name: str
    kind: ParameterKind
    expected_value: Optional[str] = None
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    unit: Optional[str] = None
    required: bool
    active: bool
    full_range: str = Field(description="Display text. Example: '235 - 245 g'")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ==========================================
# Bulk import
# ==========================================


class SpecificationImportRow(SQLModel):
    """
    One spreadsheet row. `tolerance` accepts '240 +/- 5', '10 - 20', a bare
    number, or free text.
    """
    name: str = Field(
        max_length=100,
        description="Specification name. Matched case-insensitively against the catalog."
    )
    kind: Optional[ParameterKind] = Field(
        default=None,
        description="Defaults to the catalog template's kind, or 'text' for ad-hoc rows."
    )
    tolerance: Optional[str] = None
    unit: Optional[str] = Field(default=None, max_length=20)
    required: bool = True


class SpecificationImport(SQLModel):
    rows: List[SpecificationImportRow]


class SpecificationImportError(SQLModel):
    row: int
    name: str
    message: str


class SpecificationImportResult(SQLModel):
    created: List[SpecificationRead] = []
    skipped: List[str] = Field(
        default=[], description="Names of rows with an empty tolerance.")
    errors: List[SpecificationImportError] = []
