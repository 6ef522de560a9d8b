from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status

from lotcontrol.core.dependencies import (
    get_current_principal, get_product_service, get_specification_service,
    permission_required
)
from lotcontrol.models.parameter_template import ParameterTemplateRead
from lotcontrol.models.product import ProductCreate, ProductUpdate, ProductRead
from lotcontrol.models.specification import (
    SpecificationBind, SpecificationCreate, SpecificationRead,
    SpecificationImport, SpecificationImportResult
)
from lotcontrol.services.authorization import Principal
from lotcontrol.services.product import ProductService
from lotcontrol.services.specification import SpecificationService

router = APIRouter()


@router.get(
    "/",
    response_model=List[ProductRead],
    summary="List Products"
)
def list_products(
    q: Optional[str] = None,
    active: Optional[bool] = None,
    principal: Principal = Depends(permission_required("products")),
    service: ProductService = Depends(get_product_service)
):
    return service.list_products(query=q, active=active)


@router.post(
    "/",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Product"
)
def create_product(
    payload: ProductCreate,
    principal: Principal = Depends(get_current_principal),
    service: ProductService = Depends(get_product_service)
):
    return service.create_product(principal, payload)


@router.get(
    "/{product_id}",
    response_model=ProductRead,
    summary="Get Product"
)
def get_product(
    product_id: UUID,
    principal: Principal = Depends(permission_required("products")),
    service: ProductService = Depends(get_product_service)
):
    return service.get_product(product_id)


@router.patch(
    "/{product_id}",
    response_model=ProductRead,
    summary="Update Product",
    description="Set active=false to retire a product that already has records."
)
def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    principal: Principal = Depends(get_current_principal),
    service: ProductService = Depends(get_product_service)
):
    return service.update_product(principal, product_id, payload)


# ==========================================================================
# SPECIFICATIONS
# ==========================================================================


@router.get(
    "/{product_id}/specifications",
    response_model=List[SpecificationRead],
    summary="List Product Specifications",
    description="Pass active=true to get only what quality-control capture evaluates."
)
def list_specifications(
    product_id: UUID,
    active: Optional[bool] = None,
    principal: Principal = Depends(permission_required("specifications")),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.list_for_product(product_id, active=active)


@router.get(
    "/{product_id}/available-templates",
    response_model=List[ParameterTemplateRead],
    summary="List Unbound Templates",
    description="Active catalog templates not yet bound to this product."
)
def list_available_templates(
    product_id: UUID,
    principal: Principal = Depends(permission_required("specifications")),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.list_unbound_templates(product_id)


@router.post(
    "/{product_id}/specifications",
    response_model=SpecificationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Bind Template",
    description="Copies the template's kind, unit and defaults into a product binding."
)
def bind_template(
    product_id: UUID,
    payload: SpecificationBind,
    principal: Principal = Depends(get_current_principal),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.bind_template(principal, product_id, payload)


@router.post(
    "/{product_id}/specifications/custom",
    response_model=SpecificationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Ad-hoc Specification"
)
def create_specification(
    product_id: UUID,
    payload: SpecificationCreate,
    principal: Principal = Depends(get_current_principal),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.create_specification(principal, product_id, payload)


@router.post(
    "/{product_id}/specifications/import",
    response_model=SpecificationImportResult,
    status_code=status.HTTP_200_OK,
    summary="Bulk Import Specifications",
    description="Tolerances accept '240 +/- 5', '10 - 20', a bare number, or free text."
)
def import_specifications(
    product_id: UUID,
    payload: SpecificationImport,
    principal: Principal = Depends(get_current_principal),
    service: SpecificationService = Depends(get_specification_service)
):
    return service.import_specifications(principal, product_id, payload.rows)
