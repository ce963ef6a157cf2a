from fastapi import APIRouter

from directory_billing.api import payments

api_router = APIRouter()

# Paths mirror the edge-function URLs the checkout already calls
api_router.include_router(payments.router, tags=["payments"])
