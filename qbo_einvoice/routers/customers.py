"""
QuickBooks customer creation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from qbo_einvoice.connectors.intuit_oauth import QBOAuthError
from qbo_einvoice.connectors.qbo_client import QBOAPIError
from qbo_einvoice.dependencies import Services, get_services
from qbo_einvoice.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class CreateCustomerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(alias="displayName", min_length=1)
    realm_id: Optional[str] = Field(default=None, alias="realmId")


@router.post("/createCustomer")
async def create_customer(body: CreateCustomerRequest, services: Services = Depends(get_services)):
    """
    Create a customer in the given realm, or in the most recently connected one.
    Returns the QuickBooks Customer entity.
    """
    realm_id = body.realm_id or services.credentials.default_realm_id() or services.settings.intuit_realm_id
    if not realm_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No QuickBooks company connected",
        )

    await services.credentials.ensure_valid(realm_id)

    try:
        return await services.qbo.create_customer(body.display_name, realm_id)
    except QBOAuthError as e:
        logger.warning("create_customer_unauthorized", realm_id=realm_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except QBOAPIError as e:
        logger.error("create_customer_failed", realm_id=realm_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
