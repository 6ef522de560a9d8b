import uuid
from typing import List, Optional, Set
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, func, col

from lotcontrol.core.audit import AuditTrailRecorder
from lotcontrol.core.exceptions import (
    ConflictError, DomainError, InternalError, NotFoundError, ValidationError
)
from lotcontrol.db.schema import (
    Control, ParameterKind, ParameterTemplate, ProductSpecification
)
from lotcontrol.models.control import EvaluationRead
from lotcontrol.models.parameter_template import ParameterTemplateRead
from lotcontrol.models.specification import (
    SpecificationBind,
    SpecificationCreate,
    SpecificationUpdate,
    SpecificationRead,
    SpecificationImportRow,
    SpecificationImportError,
    SpecificationImportResult,
)
from lotcontrol.services.authorization import Principal, require_permission
from lotcontrol.services.evaluation import (
    evaluate_specification, format_full_range, to_specification
)
from lotcontrol.services.parameter_template import check_bounds
from lotcontrol.services.product import ProductService
from lotcontrol.services.tolerance import parse_tolerance


def to_specification_read(spec: ProductSpecification) -> SpecificationRead:
    variant = to_specification(
        spec.kind, spec.expected_value, spec.min_range, spec.max_range, spec.unit)
    return SpecificationRead(
        id=spec.id,
        product_id=spec.product_id,
        template_id=spec.template_id,
        name=spec.name,
        kind=spec.kind,
        expected_value=spec.expected_value,
        min_range=spec.min_range,
        max_range=spec.max_range,
        unit=spec.unit,
        required=spec.required,
        active=spec.active,
        full_range=format_full_range(variant),
        created_at=spec.created_at,
        updated_at=spec.updated_at,
    )


class SpecificationService:
    """
    Binds catalog parameters (or ad-hoc ones) to products.

    Binding copies the template's values in. Later template edits never
    reach existing bindings, and bindings are not re-validated against
    their template.
    """

    def __init__(self, session: Session, audit: Optional[AuditTrailRecorder] = None):
        self.session = session
        self.audit = audit or AuditTrailRecorder(session.get_bind())
        self.products = ProductService(session, audit=self.audit)

    def _get_specification(self, specification_id: uuid.UUID) -> ProductSpecification:
        spec = self.session.get(ProductSpecification, specification_id)
        if not spec:
            raise NotFoundError("Specification", specification_id)
        return spec

    def _get_active_template(self, template_id: uuid.UUID) -> ParameterTemplate:
        template = self.session.get(ParameterTemplate, template_id)
        if not template:
            raise NotFoundError("Parameter template",
                                template_id, field="template_id")
        if not template.active:
            raise ValidationError(
                f"Parameter template '{template.name}' is inactive.", field="template_id")
        return template

    def _check_not_bound(self, product_id: uuid.UUID, template_id: Optional[uuid.UUID],
                         exclude_id: Optional[uuid.UUID] = None):
        if template_id is None:
            return
        statement = select(ProductSpecification).where(
            ProductSpecification.product_id == product_id,
            ProductSpecification.template_id == template_id,
            ProductSpecification.active == True,  # noqa: E712
        )
        if exclude_id:
            statement = statement.where(ProductSpecification.id != exclude_id)
        existing = self.session.exec(statement).first()
        if existing:
            raise ConflictError(
                f"Parameter '{existing.name}' is already bound to this product.",
                field="template_id")

    def _build_from_template(
        self,
        product_id: uuid.UUID,
        template: ParameterTemplate,
        expected_value: Optional[str] = None,
        min_range: Optional[float] = None,
        max_range: Optional[float] = None,
        unit: Optional[str] = None,
        required: bool = True,
        allow_equal: bool = False,
    ) -> ProductSpecification:
        spec = ProductSpecification(
            product_id=product_id,
            template_id=template.id,
            name=template.name,
            kind=template.kind,
            expected_value=expected_value if expected_value is not None else template.default_value,
            min_range=min_range if min_range is not None else template.min_range,
            max_range=max_range if max_range is not None else template.max_range,
            unit=unit if unit is not None else template.unit,
            required=required,
            active=True,
        )
        check_bounds(spec.kind, spec.min_range, spec.max_range, allow_equal)
        return spec

    def _commit(self, spec: ProductSpecification, action: str) -> None:
        try:
            self.session.add(spec)
            self.session.commit()
            self.session.refresh(spec)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                f"Parameter '{spec.name}' is already bound to this product.",
                field="template_id")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Specification {action} failed: {e}")
            raise InternalError(f"Could not {action} specification.")

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def list_for_product(self, product_id: uuid.UUID, active: Optional[bool] = None) -> List[SpecificationRead]:
        self.products.get_product_or_404(product_id)

        statement = select(ProductSpecification).where(
            ProductSpecification.product_id == product_id)
        if active is not None:
            statement = statement.where(ProductSpecification.active == active)

        results = self.session.exec(
            statement.order_by(ProductSpecification.name.asc())).all()
        return [to_specification_read(s) for s in results]

    def list_active_specifications(self, product_id: uuid.UUID) -> List[ProductSpecification]:
        """Rows evaluated at quality-control finalization."""
        statement = (
            select(ProductSpecification)
            .where(ProductSpecification.product_id == product_id)
            .where(ProductSpecification.active == True)  # noqa: E712
            .order_by(ProductSpecification.name.asc())
        )
        return list(self.session.exec(statement).all())

    def list_unbound_templates(self, product_id: uuid.UUID) -> List[ParameterTemplateRead]:
        """Active catalog templates with no active binding on this product."""
        self.products.get_product_or_404(product_id)

        bound = select(ProductSpecification.template_id).where(
            ProductSpecification.product_id == product_id,
            ProductSpecification.active == True,  # noqa: E712
            ProductSpecification.template_id != None,  # noqa: E711
        )
        statement = (
            select(ParameterTemplate)
            .where(ParameterTemplate.active == True)  # noqa: E712
            .where(col(ParameterTemplate.id).not_in(bound))
            .order_by(ParameterTemplate.name.asc())
        )
        results = self.session.exec(statement).all()
        return [ParameterTemplateRead.model_validate(t) for t in results]

    def get_specification(self, specification_id: uuid.UUID) -> SpecificationRead:
        return to_specification_read(self._get_specification(specification_id))

    def evaluate_value(self, specification_id: uuid.UUID, value: Optional[str]) -> EvaluationRead:
        """Dry-run of the evaluation a capture form would get. Nothing is stored."""
        spec = self._get_specification(specification_id)
        variant = to_specification(
            spec.kind, spec.expected_value, spec.min_range, spec.max_range, spec.unit)
        result = evaluate_specification(value, variant)
        return EvaluationRead(
            is_valid=result.is_valid,
            message=result.message,
            full_range=format_full_range(variant),
        )

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def bind_template(
        self,
        principal: Principal,
        product_id: uuid.UUID,
        data: SpecificationBind
    ) -> SpecificationRead:
        require_permission(principal, "specifications", "create")

        self.products.get_product_or_404(product_id, field="product_id")
        template = self._get_active_template(data.template_id)
        self._check_not_bound(product_id, template.id)

        spec = self._build_from_template(
            product_id,
            template,
            expected_value=data.expected_value.strip() if data.expected_value else None,
            min_range=data.min_range,
            max_range=data.max_range,
            unit=data.unit.strip() if data.unit else None,
            required=data.required,
        )
        self._commit(spec, "create")

        self.audit.append(
            principal.user_id,
            action="specification.created",
            resource="specifications",
            resource_id=spec.id,
            details={"specification_id": spec.id, "product_id": product_id,
                     "template_id": template.id, "name": spec.name,
                     "changes": data.model_dump(mode="json")},
        )
        return to_specification_read(spec)

    def create_specification(
        self,
        principal: Principal,
        product_id: uuid.UUID,
        data: SpecificationCreate
    ) -> SpecificationRead:
        """Ad-hoc specification without a catalog template."""
        require_permission(principal, "specifications", "create")

        self.products.get_product_or_404(product_id, field="product_id")

        name = data.name.strip()
        if not name:
            raise ValidationError("Name is required.", field="name")
        check_bounds(data.kind, data.min_range, data.max_range)

        spec = ProductSpecification(
            product_id=product_id,
            template_id=None,
            name=name,
            kind=data.kind,
            expected_value=data.expected_value.strip() if data.expected_value else None,
            min_range=data.min_range,
            max_range=data.max_range,
            unit=data.unit.strip() if data.unit else None,
            required=data.required,
            active=True,
        )
        self._commit(spec, "create")

        self.audit.append(
            principal.user_id,
            action="specification.created",
            resource="specifications",
            resource_id=spec.id,
            details={"specification_id": spec.id, "product_id": product_id,
                     "name": spec.name, "changes": data.model_dump(mode="json")},
        )
        return to_specification_read(spec)

    def update_specification(
        self,
        principal: Principal,
        specification_id: uuid.UUID,
        data: SpecificationUpdate
    ) -> SpecificationRead:
        require_permission(principal, "specifications", "update")

        spec = self._get_specification(specification_id)
        old_state = spec.model_dump(mode="json")
        updates = {k: v for k, v in data.model_dump(exclude_unset=True).items()
                   if not (v is None and k in ("name", "kind", "required", "active"))}

        if "name" in updates:
            updates["name"] = updates["name"].strip()
            if not updates["name"]:
                raise ValidationError("Name is required.", field="name")

        final_kind = updates.get("kind", spec.kind)
        check_bounds(
            final_kind,
            updates.get("min_range", spec.min_range),
            updates.get("max_range", spec.max_range),
        )

        if updates.get("active") and not spec.active:
            self._check_not_bound(
                spec.product_id, spec.template_id, exclude_id=spec.id)

        for key, value in updates.items():
            setattr(spec, key, value)
        self._commit(spec, "update")

        self.audit.append(
            principal.user_id,
            action="specification.updated",
            resource="specifications",
            resource_id=spec.id,
            details={
                "specification_id": spec.id,
                "product_id": spec.product_id,
                "changes": {k: {"old": old_state.get(k), "new": v}
                            for k, v in data.model_dump(mode="json", exclude_unset=True).items()},
            },
        )
        return to_specification_read(spec)

    def deactivate_specification(self, principal: Principal, specification_id: uuid.UUID) -> SpecificationRead:
        return self.update_specification(
            principal, specification_id, SpecificationUpdate(active=False))

    def delete_specification(self, principal: Principal, specification_id: uuid.UUID):
        """
        Hard delete is only possible while no control references the
        specification. Otherwise it must be deactivated.
        """
        require_permission(principal, "specifications", "delete")

        spec = self._get_specification(specification_id)
        control_count = self.session.exec(
            select(func.count()).select_from(Control).where(
                Control.specification_id == spec.id)
        ).one()
        if control_count > 0:
            raise ConflictError(
                "Cannot delete a specification referenced by controls; deactivate it instead.")

        snapshot = {"name": spec.name, "product_id": spec.product_id}
        try:
            self.session.delete(spec)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Specification delete failed: {e}")
            raise InternalError("Could not delete specification.")

        self.audit.append(
            principal.user_id,
            action="specification.deleted",
            resource="specifications",
            resource_id=specification_id,
            details={"specification_id": specification_id, **snapshot},
        )
        return {"message": "Specification deleted successfully."}

    # ==========================================================================
    # BULK IMPORT
    # ==========================================================================

    def import_specifications(
        self,
        principal: Principal,
        product_id: uuid.UUID,
        rows: List[SpecificationImportRow]
    ) -> SpecificationImportResult:
        """
        Creates one binding per row. Rows naming a catalog template bind it;
        other rows become ad-hoc specifications. Invalid rows are reported
        and do not stop the import.
        """
        require_permission(principal, "specifications", "create")
        self.products.get_product_or_404(product_id, field="product_id")

        result = SpecificationImportResult()
        created: List[ProductSpecification] = []
        seen_templates: Set[uuid.UUID] = set()

        for index, row in enumerate(rows, start=1):
            name = row.name.strip()
            template = self.session.exec(
                select(ParameterTemplate).where(
                    func.lower(ParameterTemplate.name) == name.lower())
            ).first()
            # Catalog rows keep the template's kind; see bind_template.
            kind = template.kind if template else (
                row.kind or ParameterKind.TEXT)

            parsed = parse_tolerance(row.tolerance, kind)
            if parsed is None:
                result.skipped.append(name)
                continue

            try:
                if template:
                    if not template.active:
                        raise ValidationError(
                            f"Parameter template '{template.name}' is inactive.", field="template_id")
                    if template.id in seen_templates:
                        raise ConflictError(
                            f"Parameter '{template.name}' appears more than once.")
                    self._check_not_bound(product_id, template.id)
                    spec = self._build_from_template(
                        product_id, template,
                        expected_value=parsed.expected_value,
                        min_range=parsed.min_range,
                        max_range=parsed.max_range,
                        unit=row.unit,
                        required=row.required,
                        allow_equal=True,
                    )
                    seen_templates.add(template.id)
                else:
                    check_bounds(
                        kind, parsed.min_range, parsed.max_range, allow_equal=True)
                    spec = ProductSpecification(
                        product_id=product_id,
                        name=name,
                        kind=kind,
                        expected_value=parsed.expected_value,
                        min_range=parsed.min_range,
                        max_range=parsed.max_range,
                        unit=row.unit,
                        required=row.required,
                    )
            except DomainError as e:
                result.errors.append(SpecificationImportError(
                    row=index, name=name, message=e.message))
                continue

            self.session.add(spec)
            created.append(spec)

        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                "A parameter in this import is already bound to the product.")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Specification import failed: {e}")
            raise InternalError("Could not import specifications.")

        for spec in created:
            self.session.refresh(spec)
            result.created.append(to_specification_read(spec))

        self.audit.append(
            principal.user_id,
            action="specification.imported",
            resource="specifications",
            resource_id=product_id,
            details={
                "product_id": product_id,
                "created": [s.name for s in result.created],
                "skipped": result.skipped,
                "errors": len(result.errors),
            },
        )
        logger.info(
            f"Imported {len(result.created)} specifications for product {product_id}")
        return result
