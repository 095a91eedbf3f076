"""Primary API router definition."""

from fastapi import APIRouter

from . import classes, ledger, payments

api_router = APIRouter()

api_router.include_router(classes.router)
api_router.include_router(payments.router)
api_router.include_router(ledger.router)


@api_router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    """Basic health probe endpoint."""
    return {"status": "ok"}
