"""
Company registry: QuickBooks realm to FIRS business identity bindings.

Responses are shaped ``{success, data?, message?}``.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from qbo_einvoice.dependencies import Services, get_services
from qbo_einvoice.models.credentials import RealmBinding
from qbo_einvoice.storage.base import DuplicateBindingError, StorageError
from qbo_einvoice.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class CompanyOut(BaseModel):
    id: str
    quickbooks_company_id: str
    firs_business_id: str
    tin: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_binding(cls, binding: RealmBinding) -> "CompanyOut":
        return cls(
            id=binding.id or "",
            quickbooks_company_id=binding.realm_id,
            firs_business_id=binding.firs_business_id,
            tin=binding.tin,
            created_at=binding.created_at.isoformat() if binding.created_at else None,
            updated_at=binding.updated_at.isoformat() if binding.updated_at else None,
        )


class CreateCompanyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    quickbooks_company_id: str = Field(min_length=1)
    firs_business_id: str = Field(min_length=1)
    tin: str = Field(min_length=1)


class UpdateCompanyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    quickbooks_company_id: Optional[str] = Field(default=None, min_length=1)
    firs_business_id: Optional[str] = Field(default=None, min_length=1)
    tin: Optional[str] = Field(default=None, min_length=1)


class CompanyResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None


def _storage_failure(action: str, error: StorageError) -> HTTPException:
    logger.error("company_storage_failed", action=action, error=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action} company",
    )


@router.post("", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
async def create_company(body: CreateCompanyRequest, services: Services = Depends(get_services)):
    logger.info("company_create", realm_id=body.quickbooks_company_id)
    try:
        binding = services.storage.create_binding(
            RealmBinding(
                realm_id=body.quickbooks_company_id,
                firs_business_id=body.firs_business_id,
                tin=body.tin,
            )
        )
    except DuplicateBindingError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except StorageError as e:
        raise _storage_failure("create", e) from e

    return CompanyResponse(
        success=True,
        data=CompanyOut.from_binding(binding),
        message="Company created successfully",
    )


@router.get("", response_model=CompanyResponse)
async def list_companies(services: Services = Depends(get_services)):
    try:
        bindings = services.storage.list_bindings()
    except StorageError as e:
        raise _storage_failure("fetch", e) from e

    return CompanyResponse(
        success=True,
        data=[CompanyOut.from_binding(b) for b in bindings],
        message=f"Found {len(bindings)} companies",
    )


@router.get("/search", response_model=CompanyResponse)
async def search_company(
    qb_id: str = Query(..., min_length=1, description="QuickBooks company ID"),
    services: Services = Depends(get_services),
):
    """Find the binding for a QuickBooks realm."""
    try:
        binding = services.storage.get_binding_by_realm(qb_id)
    except StorageError as e:
        raise _storage_failure("search", e) from e

    if binding is None:
        return CompanyResponse(success=False, message=f"No company found with QuickBooks ID: {qb_id}")

    return CompanyResponse(
        success=True,
        data=CompanyOut.from_binding(binding),
        message="Company found successfully",
    )


@router.get("/{company_id}", response_model=CompanyResponse)
async def get_company(company_id: str, services: Services = Depends(get_services)):
    try:
        binding = services.storage.get_binding(company_id)
    except StorageError as e:
        raise _storage_failure("fetch", e) from e

    if binding is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Company with ID {company_id} not found",
        )

    return CompanyResponse(
        success=True,
        data=CompanyOut.from_binding(binding),
        message="Company found successfully",
    )


@router.put("/{company_id}", response_model=CompanyResponse)
async def update_company(
    company_id: str,
    body: UpdateCompanyRequest,
    services: Services = Depends(get_services),
):
    changes = {
        "realm_id": body.quickbooks_company_id,
        "firs_business_id": body.firs_business_id,
        "tin": body.tin,
    }
    if all(value is None for value in changes.values()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one field must be provided for update",
        )

    try:
        binding = services.storage.update_binding(company_id, changes)
    except DuplicateBindingError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except StorageError as e:
        raise _storage_failure("update", e) from e

    if binding is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Company with ID {company_id} not found",
        )

    return CompanyResponse(
        success=True,
        data=CompanyOut.from_binding(binding),
        message="Company updated successfully",
    )


@router.delete("/{company_id}", response_model=CompanyResponse)
async def delete_company(company_id: str, services: Services = Depends(get_services)):
    try:
        deleted = services.storage.delete_binding(company_id)
    except StorageError as e:
        raise _storage_failure("delete", e) from e

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Company with ID {company_id} not found",
        )

    return CompanyResponse(success=True, message="Company deleted successfully")
