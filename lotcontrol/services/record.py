"""
Record lifecycle manager.

    pending --approve--> approved   (terminal)
    pending --reject---> rejected   (terminal, reason appended to observations)

Every guarded write (update, delete, finalize, approve, reject) is a single
compare-and-swap statement whose WHERE clause repeats the guard on the
persisted status. When two principals race, exactly one statement matches
a row; the other sees rowcount 0 and gets a ConflictError.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, update, delete, or_, col, func

from lotcontrol.core.audit import AuditTrailRecorder
from lotcontrol.core.config import settings
from lotcontrol.core.exceptions import (
    ConflictError, InternalError, NotFoundError, ValidationError
)
from lotcontrol.db.schema import Control, ParameterKind, Record, RecordStatus
from lotcontrol.models.control import ControlRead, ControlSubmission
from lotcontrol.models.record import (
    RecordCreate, RecordUpdate, RecordRead, RecordPage
)
from lotcontrol.services.authorization import Principal, require_permission
from lotcontrol.services.evaluation import (
    evaluate_specification, format_full_range, to_specification
)
from lotcontrol.services.product import ProductService
from lotcontrol.services.specification import SpecificationService


class RecordService:
    def __init__(self, session: Session, audit: Optional[AuditTrailRecorder] = None):
        self.session = session
        self.audit = audit or AuditTrailRecorder(session.get_bind())
        self.products = ProductService(session, audit=self.audit)
        self.specifications = SpecificationService(session, audit=self.audit)

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _get_record(self, record_id: uuid.UUID) -> Record:
        record = self.session.get(Record, record_id)
        if not record:
            raise NotFoundError("Record", record_id)
        return record

    def _ensure_pending(self, record: Record, verb: str) -> None:
        if record.status != RecordStatus.PENDING:
            raise ConflictError(
                f"Only pending records can be {verb}. Record '{record.internal_lot}' is {record.status.value}.")

    def _check_quantity(self, quantity: Optional[float]) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationError(
                "Quantity must be greater than 0.", field="quantity")

    def _check_lot_unique(self, internal_lot: str, exclude_id: Optional[uuid.UUID] = None) -> None:
        statement = select(Record).where(Record.internal_lot == internal_lot)
        if exclude_id:
            statement = statement.where(Record.id != exclude_id)
        if self.session.exec(statement).first():
            raise ConflictError(
                f"Internal lot '{internal_lot}' already exists.", field="internal_lot")

    def _compare_and_swap(self, record: Record, values: Dict[str, Any], verb: str, **guards) -> None:
        """
        UPDATE record SET values WHERE id = :id AND status = 'pending' [AND guards].
        Commits on success; raises ConflictError when the guard no longer holds.
        """
        statement = (
            update(Record)
            .where(Record.id == record.id)
            .where(Record.status == RecordStatus.PENDING)
        )
        for column, expected in guards.items():
            attribute = getattr(Record, column)
            statement = statement.where(
                attribute.is_(None) if expected is None else attribute == expected)
        statement = statement.values(**values)

        try:
            result = self.session.exec(statement)
            if result.rowcount != 1:
                self.session.rollback()
                logger.warning(
                    f"Concurrent modification on record {record.id} while it was being {verb}.")
                raise ConflictError(
                    f"Only pending records can be {verb}. The record was modified concurrently.")
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                f"Internal lot '{values.get('internal_lot')}' already exists.", field="internal_lot")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Record {record.id} could not be {verb}: {e}")
            raise InternalError(f"Record could not be {verb}.")

        self.session.refresh(record)

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def list_records(
        self,
        search: Optional[str] = None,
        product_id: Optional[uuid.UUID] = None,
        status: Optional[RecordStatus] = None,
        user_id: Optional[uuid.UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> RecordPage:
        statement = select(Record)

        if search:
            search_fmt = f"%{search}%"
            statement = statement.where(
                or_(
                    col(Record.internal_lot).ilike(search_fmt),
                    col(Record.supplier_lot).ilike(search_fmt),
                    col(Record.observations).ilike(search_fmt),
                )
            )
        if product_id:
            statement = statement.where(Record.product_id == product_id)
        if status:
            statement = statement.where(Record.status == status)
        if user_id:
            statement = statement.where(Record.user_id == user_id)
        if start_date:
            statement = statement.where(Record.registration_date >= start_date)
        if end_date:
            statement = statement.where(Record.registration_date <= end_date)

        total = self.session.exec(
            select(func.count()).select_from(statement.subquery())).one()

        page = max(page, 1)
        results = self.session.exec(
            statement
            .order_by(col(Record.created_at).desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        return RecordPage(
            items=[RecordRead.model_validate(r) for r in results],
            total=total,
            page=page,
            limit=limit,
        )

    def get_record(self, record_id: uuid.UUID) -> RecordRead:
        return RecordRead.model_validate(self._get_record(record_id))

    def list_controls(self, record_id: uuid.UUID) -> List[ControlRead]:
        self._get_record(record_id)
        statement = (
            select(Control)
            .where(Control.record_id == record_id)
            .order_by(Control.parameter_name.asc())
        )
        return [ControlRead.model_validate(c) for c in self.session.exec(statement).all()]

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def create_record(self, principal: Principal, data: RecordCreate) -> RecordRead:
        require_permission(principal, "records", "create")

        internal_lot = data.internal_lot.strip()
        if not internal_lot:
            raise ValidationError(
                "Internal lot is required.", field="internal_lot")
        self._check_quantity(data.quantity)
        product = self.products.get_product_or_404(
            data.product_id, field="product_id")
        self._check_lot_unique(internal_lot)

        record = Record(
            product_id=product.id,
            internal_lot=internal_lot,
            supplier_lot=data.supplier_lot.strip() if data.supplier_lot else None,
            quantity=data.quantity,
            registration_date=data.registration_date or datetime.utcnow(),
            expiration_date=data.expiration_date,
            observations=data.observations,
            status=RecordStatus.PENDING,
            user_id=principal.user_id,
        )

        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except IntegrityError:
            # Unique constraint on internal_lot lost a race with another insert
            self.session.rollback()
            raise ConflictError(
                f"Internal lot '{internal_lot}' already exists.", field="internal_lot")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Record creation failed: {e}")
            raise InternalError("Could not create record.")

        self.audit.append(
            principal.user_id,
            action="record.created",
            resource="records",
            resource_id=record.id,
            details={
                "record_id": record.id,
                "internal_lot": record.internal_lot,
                "product_id": product.id,
                "product_name": product.name,
                "quantity": record.quantity,
                "after": {"status": record.status.value},
            },
        )
        logger.info(
            f"Record {record.internal_lot} created by {principal.user_id}")
        return RecordRead.model_validate(record)

    def update_record(self, principal: Principal, record_id: uuid.UUID, data: RecordUpdate) -> RecordRead:
        require_permission(principal, "records", "update")

        record = self._get_record(record_id)
        self._ensure_pending(record, "edited")

        updates = data.model_dump(exclude_unset=True)
        for key in ("product_id", "internal_lot", "quantity", "registration_date"):
            if key in updates and updates[key] is None:
                raise ValidationError(f"{key} cannot be empty.", field=key)

        if "quantity" in updates:
            self._check_quantity(updates["quantity"])
        if "product_id" in updates and updates["product_id"] != record.product_id:
            self.products.get_product_or_404(
                updates["product_id"], field="product_id")
        if "internal_lot" in updates:
            updates["internal_lot"] = updates["internal_lot"].strip()
            if not updates["internal_lot"]:
                raise ValidationError(
                    "Internal lot is required.", field="internal_lot")
            if updates["internal_lot"] != record.internal_lot:
                self._check_lot_unique(
                    updates["internal_lot"], exclude_id=record.id)

        if not updates:
            return RecordRead.model_validate(record)

        before = {k: getattr(record, k) for k in updates}
        self._compare_and_swap(record, updates, "edited")

        self.audit.append(
            principal.user_id,
            action="record.updated",
            resource="records",
            resource_id=record.id,
            details={
                "record_id": record.id,
                "internal_lot": record.internal_lot,
                "changes": {k: {"old": before[k], "new": getattr(record, k)} for k in updates},
            },
        )
        return RecordRead.model_validate(record)

    def delete_record(self, principal: Principal, record_id: uuid.UUID):
        require_permission(principal, "records", "delete")

        record = self._get_record(record_id)
        self._ensure_pending(record, "deleted")
        snapshot = {
            "record_id": record.id,
            "internal_lot": record.internal_lot,
            "product_id": record.product_id,
            "before": {"status": record.status.value},
        }

        try:
            self.session.exec(delete(Control).where(
                Control.record_id == record.id))
            result = self.session.exec(
                delete(Record)
                .where(Record.id == record.id)
                .where(Record.status == RecordStatus.PENDING)
            )
            if result.rowcount != 1:
                self.session.rollback()
                raise ConflictError(
                    "Only pending records can be deleted. The record was modified concurrently.")
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Record deletion failed: {e}")
            raise InternalError("Could not delete record.")

        self.audit.append(
            principal.user_id,
            action="record.deleted",
            resource="records",
            resource_id=record_id,
            details=snapshot,
        )
        logger.info(f"Record {snapshot['internal_lot']} deleted")
        return {"message": "Record deleted successfully."}

    def submit_controls(
        self,
        principal: Principal,
        record_id: uuid.UUID,
        submission: ControlSubmission
    ) -> List[ControlRead]:
        """
        Finalizes quality control: evaluates every active specification of the
        record's product and stores one immutable Control per specification.
        Happens once per record; the status is left untouched.
        """
        require_permission(principal, "controls", "create")

        record = self._get_record(record_id)
        self._ensure_pending(record, "measured")
        if record.controls_submitted_at is not None:
            raise ConflictError(
                f"Controls for record '{record.internal_lot}' were already submitted.")

        specifications = self.specifications.list_active_specifications(
            record.product_id)
        by_id = {spec.id: spec for spec in specifications}

        measurements = {}
        for measurement in submission.measurements:
            if measurement.specification_id not in by_id:
                raise ValidationError(
                    f"Specification '{measurement.specification_id}' is not an active specification of this product.",
                    field="measurements")
            if measurement.specification_id in measurements:
                raise ValidationError(
                    f"Specification '{measurement.specification_id}' was measured more than once.",
                    field="measurements")
            measurements[measurement.specification_id] = measurement

        controls = []
        for spec in specifications:
            measurement = measurements.get(spec.id)
            raw = measurement.value if measurement else None
            value = None if raw is None else str(raw).strip()

            variant = to_specification(
                spec.kind, spec.expected_value, spec.min_range, spec.max_range, spec.unit)
            result = evaluate_specification(value, variant)

            control = Control(
                record_id=record.id,
                specification_id=spec.id,
                parameter_name=spec.name,
                full_range=format_full_range(variant),
                parameter_type=spec.kind,
                out_of_range=not result.is_valid,
                alert_message=result.message if not result.is_valid else None,
                observation=measurement.observation if measurement else None,
            )
            if value:
                if spec.kind != ParameterKind.TEXT and result.numeric_value is not None:
                    control.control_value = result.numeric_value
                else:
                    control.text_control = value
            controls.append(control)

        self.session.add_all(controls)
        self._compare_and_swap(
            record,
            {"controls_submitted_at": datetime.utcnow()},
            "measured",
            controls_submitted_at=None,
        )

        out_of_range = [c.parameter_name for c in controls if c.out_of_range]
        self.audit.append(
            principal.user_id,
            action="quality_control.submitted",
            resource="controls",
            resource_id=record.id,
            details={
                "record_id": record.id,
                "internal_lot": record.internal_lot,
                "controls_count": len(controls),
                "out_of_range": out_of_range,
            },
        )
        if out_of_range:
            logger.warning(
                f"Record {record.internal_lot}: {len(out_of_range)} parameter(s) out of range")

        return self.list_controls(record.id)

    def approve_record(self, principal: Principal, record_id: uuid.UUID) -> RecordRead:
        require_permission(principal, "records", "approve")

        record = self._get_record(record_id)
        self._ensure_pending(record, "approved")
        if settings.require_controls_before_approval and record.controls_submitted_at is None:
            raise ConflictError(
                "Controls must be submitted before the record can be approved.")

        now = datetime.utcnow()
        self._compare_and_swap(
            record,
            {"status": RecordStatus.APPROVED,
             "approved_by": principal.user_id, "approval_date": now},
            "approved",
        )

        self.audit.append(
            principal.user_id,
            action="record.approved",
            resource="records",
            resource_id=record.id,
            details={
                "record_id": record.id,
                "internal_lot": record.internal_lot,
                "before": {"status": RecordStatus.PENDING.value},
                "after": {"status": record.status.value,
                          "approved_by": principal.user_id, "approval_date": now},
            },
        )
        logger.info(f"Record {record.internal_lot} approved")
        return RecordRead.model_validate(record)

    def reject_record(self, principal: Principal, record_id: uuid.UUID, reason: Optional[str] = None) -> RecordRead:
        require_permission(principal, "records", "approve")

        record = self._get_record(record_id)
        self._ensure_pending(record, "rejected")

        observations = record.observations
        reason = reason.strip() if reason else None
        if reason:
            observations = f"{observations or ''}\n\nRejected: {reason}".strip()

        now = datetime.utcnow()
        # updated_at guard: the appended text is computed from what we read
        self._compare_and_swap(
            record,
            {"status": RecordStatus.REJECTED, "approved_by": principal.user_id,
             "approval_date": now, "observations": observations},
            "rejected",
            updated_at=record.updated_at,
        )

        self.audit.append(
            principal.user_id,
            action="record.rejected",
            resource="records",
            resource_id=record.id,
            details={
                "record_id": record.id,
                "internal_lot": record.internal_lot,
                "rejection_reason": reason,
                "before": {"status": RecordStatus.PENDING.value},
                "after": {"status": record.status.value,
                          "approved_by": principal.user_id, "approval_date": now},
            },
        )
        logger.info(f"Record {record.internal_lot} rejected")
        return RecordRead.model_validate(record)
