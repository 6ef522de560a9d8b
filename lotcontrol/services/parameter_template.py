import uuid
from typing import List, Optional
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, or_, col

from lotcontrol.core.audit import AuditTrailRecorder
from lotcontrol.core.exceptions import InternalError, NotFoundError, ValidationError
from lotcontrol.db.schema import ParameterKind, ParameterTemplate
from lotcontrol.models.parameter_template import (
    ParameterTemplateCreate,
    ParameterTemplateUpdate,
    ParameterTemplateRead
)
from lotcontrol.services.authorization import Principal, require_permission


def check_bounds(
    kind: ParameterKind,
    min_range: Optional[float],
    max_range: Optional[float],
    allow_equal: bool = False,
) -> None:
    """
    Range kinds need both bounds and min_range < max_range. Other kinds
    accept whatever bounds they are given.

    `allow_equal` admits a single-point range (min_range == max_range), which
    is what an imported bare-number or "x +/- 0" tolerance produces.
    """
    if kind != ParameterKind.RANGE:
        return
    if min_range is None:
        raise ValidationError(
            "min_range is required for range parameters.", field="min_range")
    if max_range is None:
        raise ValidationError(
            "max_range is required for range parameters.", field="max_range")
    if min_range > max_range or (min_range == max_range and not allow_equal):
        raise ValidationError(
            "min_range must be less than max_range.", field="min_range")


class ParameterTemplateService:
    def __init__(self, session: Session, audit: Optional[AuditTrailRecorder] = None):
        self.session = session
        self.audit = audit or AuditTrailRecorder(session.get_bind())

    def _get_template(self, template_id: uuid.UUID) -> ParameterTemplate:
        template = self.session.get(ParameterTemplate, template_id)
        if not template:
            raise NotFoundError("Parameter template", template_id)
        return template

    def _check_name(self, name: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.", field="name")

        statement = select(ParameterTemplate).where(
            ParameterTemplate.name == name)
        if exclude_id:
            statement = statement.where(ParameterTemplate.id != exclude_id)

        if self.session.exec(statement).first():
            raise ValidationError(
                f"A parameter named '{name}' already exists.", field="name")
        return name

    def _commit(self, template: ParameterTemplate, action: str) -> None:
        try:
            self.session.add(template)
            self.session.commit()
            self.session.refresh(template)
        except IntegrityError:
            self.session.rollback()
            raise ValidationError(
                f"A parameter named '{template.name}' already exists.", field="name")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Parameter template {action} failed: {e}")
            raise InternalError(f"Could not {action} parameter template.")

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def list_templates(
        self,
        query: Optional[str] = None,
        kind: Optional[ParameterKind] = None,
        active: Optional[bool] = None,
    ) -> List[ParameterTemplateRead]:
        statement = select(ParameterTemplate)

        if query:
            search_fmt = f"%{query}%"
            statement = statement.where(
                or_(
                    col(ParameterTemplate.name).ilike(search_fmt),
                    col(ParameterTemplate.description).ilike(search_fmt)
                )
            )
        if kind:
            statement = statement.where(ParameterTemplate.kind == kind)
        if active is not None:
            statement = statement.where(ParameterTemplate.active == active)

        statement = statement.order_by(ParameterTemplate.name.asc())
        results = self.session.exec(statement).all()
        return [ParameterTemplateRead.model_validate(t) for t in results]

    def get_template(self, template_id: uuid.UUID) -> ParameterTemplateRead:
        return ParameterTemplateRead.model_validate(self._get_template(template_id))

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def create_template(self, principal: Principal, data: ParameterTemplateCreate) -> ParameterTemplateRead:
        require_permission(principal, "parameters", "create")

        name = self._check_name(data.name)
        check_bounds(data.kind, data.min_range, data.max_range)

        template = ParameterTemplate(
            name=name,
            description=data.description.strip() if data.description else None,
            kind=data.kind,
            default_value=data.default_value.strip() if data.default_value else None,
            min_range=data.min_range if data.kind == ParameterKind.RANGE else None,
            max_range=data.max_range if data.kind == ParameterKind.RANGE else None,
            unit=data.unit.strip() if data.unit else None,
            active=data.active,
        )
        self._commit(template, "create")

        self.audit.append(
            principal.user_id,
            action="parameter_template.created",
            resource="parameters",
            resource_id=template.id,
            details={"template_id": template.id, "name": template.name,
                     "changes": data.model_dump(mode="json")},
        )
        logger.info(f"Parameter template created: {template.name}")
        return ParameterTemplateRead.model_validate(template)

    def update_template(
        self,
        principal: Principal,
        template_id: uuid.UUID,
        data: ParameterTemplateUpdate
    ) -> ParameterTemplateRead:
        require_permission(principal, "parameters", "update")

        template = self._get_template(template_id)
        old_state = template.model_dump(mode="json")
        updates = {k: v for k, v in data.model_dump(exclude_unset=True).items()
                   if not (v is None and k in ("kind", "active"))}

        if "name" in updates:
            updates["name"] = self._check_name(
                updates["name"], exclude_id=template.id)

        final_kind = updates.get("kind") or template.kind
        final_min = updates.get("min_range", template.min_range)
        final_max = updates.get("max_range", template.max_range)
        check_bounds(final_kind, final_min, final_max)

        if final_kind != ParameterKind.RANGE:
            updates["min_range"] = None
            updates["max_range"] = None

        for key, value in updates.items():
            setattr(template, key, value)

        self._commit(template, "update")

        changes = {k: {"old": old_state.get(k), "new": v}
                   for k, v in data.model_dump(mode="json", exclude_unset=True).items()}
        self.audit.append(
            principal.user_id,
            action="parameter_template.updated",
            resource="parameters",
            resource_id=template.id,
            details={"template_id": template.id, "changes": changes},
        )
        return ParameterTemplateRead.model_validate(template)

    def deactivate_template(self, principal: Principal, template_id: uuid.UUID) -> ParameterTemplateRead:
        """
        Templates are never deleted: existing bindings keep their copied
        values and may still reference the template id.
        """
        require_permission(principal, "parameters", "update")

        template = self._get_template(template_id)
        if not template.active:
            return ParameterTemplateRead.model_validate(template)

        template.active = False
        self._commit(template, "deactivate")

        self.audit.append(
            principal.user_id,
            action="parameter_template.deactivated",
            resource="parameters",
            resource_id=template.id,
            details={"template_id": template.id, "name": template.name,
                     "changes": {"active": {"old": True, "new": False}}},
        )
        return ParameterTemplateRead.model_validate(template)
