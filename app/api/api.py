# app/api/api.py

from fastapi import APIRouter

from app.api.endpoints import payments, pos, qrcode, sales

api_router = APIRouter()

api_router.include_router(pos.router, prefix="/pos", tags=["Point of Sale"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(sales.router, prefix="/sales", tags=["Sales"])
api_router.include_router(qrcode.router, prefix="/qrcode", tags=["QR Codes"])
