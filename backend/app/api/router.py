from fastapi import APIRouter

from app.api.routes import health, offers, purchase_orders, request_orders

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(request_orders.router)
api_router.include_router(offers.router)
api_router.include_router(purchase_orders.router)
