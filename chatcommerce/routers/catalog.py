from fastapi import APIRouter, Depends, HTTPException

from chatcommerce.dependencies import get_engine
from chatcommerce.schemas.admin import CatalogResponse, ProductOut
from chatcommerce.services.engine import Engine
from chatcommerce.services.tenant_registry import CATALOG_WEB

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/{tenant_id}/catalog", response_model=CatalogResponse)
def get_catalog(tenant_id: str, engine: Engine = Depends(get_engine)):
    tenant = engine.registry.get_by_id(tenant_id)
    if tenant is None or not tenant.has_capability(CATALOG_WEB):
        raise HTTPException(status_code=404, detail=f"Catalog for '{tenant_id}' not found")

    products = engine.records_for(tenant).get_products()
    return CatalogResponse(
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        products=[
            ProductOut(
                code=p.code,
                name=p.name,
                description=p.description,
                price=p.price,
                available=p.available,
                image_url=p.image_url or None,
                category=p.category,
            )
            for p in products
        ],
    )
