from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid
from enum import Enum

from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field, Relationship, JSON


class ParameterKind(str, Enum):
    RANGE = "range"      # Inclusive [min_range, max_range]
    NUMERIC = "numeric"  # Any parseable number, optional expected value
    TEXT = "text"        # Normalized text comparison


class RecordStatus(str, Enum):
    PENDING = "pending"    # Initial, editable
    APPROVED = "approved"  # Terminal
    REJECTED = "rejected"  # Terminal, observations are append-only


class TimestampMixin(SQLModel):
    """
    Standard creation/modification timestamps shared by every mutable entity.
    """
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="UTC timestamp when this row was first persisted. Example: '2024-03-01 14:30:00'"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"onupdate": datetime.utcnow},
        description="UTC timestamp of the last modification. Updates automatically."
    )


# ==========================================================================
# ACCESS CONTROL
# ==========================================================================


class RolePermissionLink(TimestampMixin, SQLModel, table=True):
    """
    Many-to-many pivot between Roles and Permissions.
    """
    role_id: uuid.UUID = Field(
        foreign_key="role.id",
        primary_key=True,
        description="The role being granted the permission."
    )
    permission_id: uuid.UUID = Field(
        foreign_key="permission.id",
        primary_key=True,
        description="The permission being granted."
    )


class UserRoleLink(TimestampMixin, SQLModel, table=True):
    """
    Many-to-many pivot between Users and Roles. A user may hold several roles;
    their authority is the highest level among them.
    """
    user_id: uuid.UUID = Field(
        foreign_key="user.id",
        primary_key=True,
        description="The user holding the role."
    )
    role_id: uuid.UUID = Field(
        foreign_key="role.id",
        primary_key=True,
        description="The role held by the user."
    )


class Permission(TimestampMixin, SQLModel, table=True):
    """
    An atomic capability, named 'resource:action' (e.g. 'records:approve').
    Permissions are system-defined and linked to Roles, never to Users.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    name: str = Field(
        unique=True,
        index=True,
        description="The technical slug used in authorization checks. Example: 'records:approve'"
    )
    resource: str = Field(
        index=True,
        description="The resource part of the name. Example: 'records'"
    )
    action: str = Field(
        description="The action part of the name. Example: 'approve'"
    )
    display_name: str = Field(
        description="Human-readable label. Example: 'Approve Records'"
    )
    description: Optional[str] = Field(default=None)

    roles: List["Role"] = Relationship(
        back_populates="permissions", link_model=RolePermissionLink)


class Role(TimestampMixin, SQLModel, table=True):
    """
    A named collection of permissions with a hierarchical authority level.
    Roles with level >= 80 are protected: they cannot be edited or deleted
    through role management, and their holders cannot be deleted, demoted,
    or stripped of their second factor by another principal.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    name: str = Field(
        unique=True,
        index=True,
        description="Technical role name. Example: 'supervisor'"
    )
    display_name: str = Field(
        description="Human-readable role name. Example: 'Quality Supervisor'"
    )
    description: Optional[str] = Field(default=None)
    level: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Authority ranking from 0 to 100. Higher means more authority."
    )
    is_system: bool = Field(
        default=False,
        description="True for roles created by the seed script."
    )

    permissions: List["Permission"] = Relationship(
        back_populates="roles", link_model=RolePermissionLink)
    users: List["User"] = Relationship(
        back_populates="roles", link_model=UserRoleLink)


class User(TimestampMixin, SQLModel, table=True):
    """
    A human operator (quality-assurance staff or administrator).
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    email: str = Field(
        unique=True,
        index=True,
        description="The login email address. Example: 'qa@example.com'"
    )
    full_name: str = Field(
        description="Display name. Example: 'Ana Torres'"
    )
    hashed_password: str = Field(
        description="bcrypt hash of the password. Never plain text."
    )
    is_active: bool = Field(
        default=True,
        description="If False, the user cannot sign in."
    )
    two_factor_enabled: bool = Field(default=False)
    two_factor_secret: Optional[str] = Field(default=None)

    roles: List["Role"] = Relationship(
        back_populates="users", link_model=UserRoleLink)


# ==========================================================================
# CATALOG & SPECIFICATIONS
# ==========================================================================


class Product(TimestampMixin, SQLModel, table=True):
    """
    A manufactured or purchased item whose lots go through quality control.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    name: str = Field(
        index=True,
        description="Example: 'Botella PET x 1 L'"
    )
    code: Optional[str] = Field(
        default=None,
        unique=True,
        description="Optional internal code. Example: 'BOT-PET-1L'"
    )
    description: Optional[str] = Field(default=None)
    active: bool = Field(default=True)

    specifications: List["ProductSpecification"] = Relationship(
        back_populates="product")
    records: List["Record"] = Relationship(back_populates="product")


class ParameterTemplate(TimestampMixin, SQLModel, table=True):
    """
    A reusable measurement definition in the parameter catalog.
    Templates are never deleted, only deactivated, because bindings may
    still reference them by id.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    name: str = Field(
        unique=True,
        index=True,
        description="Example: 'PESO'"
    )
    description: Optional[str] = Field(default=None)
    kind: ParameterKind = Field(
        description="How measurements of this parameter are compared."
    )
    default_value: Optional[str] = Field(
        default=None,
        description="Default expected value copied at bind time. Example: 'Transparente'"
    )
    min_range: Optional[float] = Field(default=None)
    max_range: Optional[float] = Field(default=None)
    unit: Optional[str] = Field(
        default=None,
        description="Example: 'g'"
    )
    active: bool = Field(default=True)


class ProductSpecification(TimestampMixin, SQLModel, table=True):
    """
    A parameter bound to one product with product-specific expectations.
    Values are copied from the template at bind time; there is no live
    coupling afterwards.
    """
    __table_args__ = (
        Index(
            "uq_specification_active_binding",
            "product_id",
            "template_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active = true"),
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    product_id: uuid.UUID = Field(
        foreign_key="product.id",
        index=True,
    )
    template_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="parametertemplate.id",
        description="Source template, lookup only. NULL for ad-hoc specifications."
    )
    name: str = Field(description="Example: 'DIÁMETRO EXTERNO'")
    kind: ParameterKind
    expected_value: Optional[str] = Field(default=None)
    min_range: Optional[float] = Field(default=None)
    max_range: Optional[float] = Field(default=None)
    unit: Optional[str] = Field(default=None)
    required: bool = Field(default=True)
    active: bool = Field(default=True)

    product: Product = Relationship(back_populates="specifications")


# ==========================================================================
# RECORDS & EVIDENCE
# ==========================================================================


class Record(TimestampMixin, SQLModel, table=True):
    """
    One lot of a product moving through the quality-control workflow.

    approved_by/approval_date are both NULL while pending and both set once
    the record leaves pending (approval or rejection).
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    product_id: uuid.UUID = Field(
        foreign_key="product.id",
        index=True,
    )
    internal_lot: str = Field(
        unique=True,
        index=True,
        description="Globally unique, case-sensitive lot code. Example: 'TPT45-2024-001'"
    )
    supplier_lot: Optional[str] = Field(default=None)
    quantity: float = Field(description="Must be greater than zero.")
    registration_date: datetime = Field(default_factory=datetime.utcnow)
    expiration_date: Optional[datetime] = Field(default=None)
    status: RecordStatus = Field(
        default=RecordStatus.PENDING,
        index=True,
    )
    user_id: uuid.UUID = Field(
        foreign_key="user.id",
        description="The principal who created the record."
    )
    approved_by: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="user.id",
        description="The principal who approved or rejected the record."
    )
    approval_date: Optional[datetime] = Field(default=None)
    observations: Optional[str] = Field(default=None)
    controls_submitted_at: Optional[datetime] = Field(
        default=None,
        description="Set once, when the quality-control submission is finalized."
    )

    product: Product = Relationship(back_populates="records")
    controls: List["Control"] = Relationship(
        back_populates="record",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"})


class Control(SQLModel, table=True):
    """
    Immutable evaluation of one specification against one measurement.
    Carries a snapshot of the specification so the evidence stays stable
    if the specification later changes. Holds control_value or text_control,
    never both.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    record_id: uuid.UUID = Field(
        foreign_key="record.id",
        index=True,
    )
    specification_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="productspecification.id",
        index=True,
    )
    parameter_name: str
    full_range: str = Field(
        description="Display text of the expectation at evaluation time. Example: '235 - 245 g'"
    )
    parameter_type: ParameterKind
    control_value: Optional[float] = Field(default=None)
    text_control: Optional[str] = Field(default=None)
    out_of_range: bool = Field(default=False)
    alert_message: Optional[str] = Field(default=None)
    observation: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    record: Record = Relationship(back_populates="controls")


class AuditLogEntry(SQLModel, table=True):
    """
    Append-only evidence of a mutating action. Never updated or deleted.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
    )
    user_id: Optional[uuid.UUID] = Field(
        default=None,
        index=True,
        description="The acting principal."
    )
    action: str = Field(
        index=True,
        description="Dotted action name. Example: 'record.approved'"
    )
    resource: str = Field(
        index=True,
        description="Example: 'records'"
    )
    resource_id: Optional[str] = Field(default=None, index=True)
    details: Dict[str, Any] = Field(
        default_factory=dict,
        sa_type=JSON,
        description="Arbitrary metadata: resource id, changed fields, before/after state."
    )
    timestamp: datetime = Field(default_factory=datetime.utcnow)
