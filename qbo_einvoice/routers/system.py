"""
System health router.
"""

import time

from fastapi import APIRouter, Depends

from qbo_einvoice.dependencies import Services, get_services
from qbo_einvoice.storage.base import StorageError
from qbo_einvoice.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

# Track startup time for uptime calculation
_startup_time = time.time()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """
    Liveness check for load balancers and monitoring.
    Reports database connectivity and which optional integrations are configured.
    """
    db_status = "healthy"
    try:
        services.storage.list_credential_realms()
    except StorageError as e:
        logger.warning("health_database_unavailable", error=str(e))
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "database": db_status,
        "environment": services.settings.intuit_env,
        "qr_encryption_configured": services.settings.qr_encryption_configured,
        "object_storage_configured": services.object_storage.is_configured,
    }
