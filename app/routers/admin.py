"""
📊 ADMIN API - CONSULTA Y GESTIÓN DE PEDIDOS
============================================

Endpoints de solo uso interno (panel / operadores) sobre los pedidos que el
bot crea por WhatsApp.

- GET  /api/orders?status=pending          → lista (más recientes primero)
- GET  /api/orders/{order_number}          → detalle con items
- PUT  /api/orders/{order_number}/confirm  → pending → confirmed
- PUT  /api/orders/{order_number}/status   → avance de estado (solo hacia adelante)
- GET  /api/orders/{order_number}/receipt.pdf
- GET  /api/products                       → catálogo disponible
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.services.catalog_service import CatalogService
from app.services.order_service import OrderService
from app.services.receipt_service import ReceiptService
from database.connection import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


class StatusUpdateIn(BaseModel):
    status: str


def _raise_for(result: dict) -> None:
    error = result.get("error", "Unknown error")
    if error == "Order not found":
        raise HTTPException(status_code=404, detail=error)
    if error.startswith("Cannot move order"):
        raise HTTPException(status_code=409, detail=error)
    raise HTTPException(status_code=400, detail=error)


@router.get("/orders")
async def list_orders(status: Optional[str] = Query(None), db: Session = Depends(get_db)):
    result = OrderService(db).list_orders(status)
    if not result["success"]:
        _raise_for(result)
    return {"orders": result["orders"], "total_orders": result["total_orders"]}


@router.get("/orders/{order_number}")
async def get_order(order_number: str, db: Session = Depends(get_db)):
    result = OrderService(db).get_order_by_number(order_number)
    if not result["success"]:
        _raise_for(result)
    return result["order"]


@router.put("/orders/{order_number}/confirm")
async def confirm_order(order_number: str, db: Session = Depends(get_db)):
    result = OrderService(db).confirm_order(order_number)
    if not result["success"]:
        _raise_for(result)
    logger.info("✅ Pedido %s confirmado desde admin", order_number)
    return {"message": "Order confirmed successfully", **result["order"]}


@router.put("/orders/{order_number}/status")
async def update_status(order_number: str, data: StatusUpdateIn, db: Session = Depends(get_db)):
    result = OrderService(db).update_order_status(order_number, data.status)
    if not result["success"]:
        _raise_for(result)
    logger.info("🔄 Pedido %s → %s", order_number, data.status)
    return result["order"]


@router.get("/orders/{order_number}/receipt.pdf")
async def order_receipt(order_number: str, db: Session = Depends(get_db)):
    result = OrderService(db).get_order_by_number(order_number)
    if not result["success"]:
        _raise_for(result)
    pdf = ReceiptService().render_pdf(result["order"])
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{ReceiptService.filename(order_number)}"'},
    )


@router.get("/products")
async def list_products(db: Session = Depends(get_db)):
    products = CatalogService(db).list_available()
    return {
        "products": [p.model_dump(mode="json") for p in products],
        "total_products": len(products),
    }
