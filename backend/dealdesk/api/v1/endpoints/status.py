"""
Status and health check endpoints.

WHAT: Health monitoring for the deal store database
WHY: Clients and ops can check the store before issuing commands
HOW: FastAPI endpoint calling ping_database
"""

from fastapi import APIRouter

from ....core.database import ping_database
from ....core.config import settings

router = APIRouter()


@router.get("/status")
async def store_status():
    """
    Overall deal store health.

    Returns:
        JSON with overall status, app metadata and database status
    """
    db_status = ping_database()

    return {
        "status": "healthy" if db_status["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "database": db_status,
    }
