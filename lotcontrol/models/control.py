import uuid
from datetime import datetime
from typing import List, Optional, Union
from sqlmodel import SQLModel, Field
from lotcontrol.db.schema import ParameterKind


class Measurement(SQLModel):
    specification_id: uuid.UUID
    value: Optional[Union[str, float]] = Field(
        default=None,
        description="The measured value. Empty means not measured."
    )
    observation: Optional[str] = Field(default=None, max_length=1000)


class ControlSubmission(SQLModel):
    """
    Finalizes the quality-control capture of a record. Every active
    specification of the product is evaluated, measured or not.
    """
    measurements: List[Measurement] = []


class ControlRead(SQLModel):
    id: uuid.UUID
    record_id: uuid.UUID
    specification_id: Optional[uuid.UUID] = None
    parameter_name: str
    full_range: str
    parameter_type: ParameterKind
    control_value: Optional[float] = None
    text_control: Optional[str] = None
    out_of_range: bool
    alert_message: Optional[str] = None
    observation: Optional[str] = None
    created_at: datetime


class EvaluationRequest(SQLModel):
    """Dry-run evaluation of a single value, used by capture forms."""
    value: Optional[Union[str, float]] = None


class EvaluationRead(SQLModel):
    is_valid: bool
    message: Optional[str] = None
    full_range: str
