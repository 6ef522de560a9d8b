import uuid
from typing import List, Optional
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, or_, col

from lotcontrol.core.audit import AuditTrailRecorder
from lotcontrol.core.exceptions import ConflictError, InternalError, NotFoundError
from lotcontrol.db.schema import Product
from lotcontrol.models.product import ProductCreate, ProductUpdate, ProductRead
from lotcontrol.services.authorization import Principal, require_permission


class ProductService:
    """
    Thin product catalog. Products anchor specifications and records; they
    are deactivated rather than deleted.
    """

    def __init__(self, session: Session, audit: Optional[AuditTrailRecorder] = None):
        self.session = session
        self.audit = audit or AuditTrailRecorder(session.get_bind())

    def get_product_or_404(self, product_id: uuid.UUID, field: Optional[str] = None) -> Product:
        product = self.session.get(Product, product_id)
        if not product:
            raise NotFoundError("Product", product_id, field=field)
        return product

    def _check_code(self, code: Optional[str], exclude_id: Optional[uuid.UUID] = None):
        if not code:
            return
        statement = select(Product).where(Product.code == code)
        if exclude_id:
            statement = statement.where(Product.id != exclude_id)
        if self.session.exec(statement).first():
            raise ConflictError(
                f"Product code '{code}' already exists.", field="code")

    def _commit(self, product: Product) -> None:
        try:
            self.session.add(product)
            self.session.commit()
            self.session.refresh(product)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                f"Product code '{product.code}' already exists.", field="code")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Product save failed: {e}")
            raise InternalError("Could not save product.")

    def list_products(self, query: Optional[str] = None, active: Optional[bool] = None) -> List[ProductRead]:
        statement = select(Product)
        if query:
            search_fmt = f"%{query}%"
            statement = statement.where(
                or_(
                    col(Product.name).ilike(search_fmt),
                    col(Product.code).ilike(search_fmt)
                )
            )
        if active is not None:
            statement = statement.where(Product.active == active)

        results = self.session.exec(
            statement.order_by(Product.name.asc())).all()
        return [ProductRead.model_validate(p) for p in results]

    def get_product(self, product_id: uuid.UUID) -> ProductRead:
        return ProductRead.model_validate(self.get_product_or_404(product_id))

    def create_product(self, principal: Principal, data: ProductCreate) -> ProductRead:
        require_permission(principal, "products", "create")

        code = data.code.strip() if data.code else None
        self._check_code(code)

        product = Product(
            name=data.name.strip(),
            code=code,
            description=data.description.strip() if data.description else None,
            active=data.active,
        )
        self._commit(product)

        self.audit.append(
            principal.user_id,
            action="product.created",
            resource="products",
            resource_id=product.id,
            details={"product_id": product.id, "name": product.name,
                     "changes": data.model_dump(mode="json")},
        )
        return ProductRead.model_validate(product)

    def update_product(self, principal: Principal, product_id: uuid.UUID, data: ProductUpdate) -> ProductRead:
        require_permission(principal, "products", "update")

        product = self.get_product_or_404(product_id)
        old_state = product.model_dump(mode="json")
        updates = {k: v for k, v in data.model_dump(exclude_unset=True).items()
                   if not (v is None and k in ("name", "active"))}

        if updates.get("code"):
            updates["code"] = updates["code"].strip()
            self._check_code(updates["code"], exclude_id=product.id)

        for key, value in updates.items():
            setattr(product, key, value)
        self._commit(product)

        self.audit.append(
            principal.user_id,
            action="product.updated",
            resource="products",
            resource_id=product.id,
            details={
                "product_id": product.id,
                "changes": {k: {"old": old_state.get(k), "new": v}
                            for k, v in data.model_dump(mode="json", exclude_unset=True).items()},
            },
        )
        return ProductRead.model_validate(product)
