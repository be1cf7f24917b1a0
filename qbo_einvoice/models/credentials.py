"""
OAuth credential and realm binding models.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field

# Refresh this long before the access token actually expires.
EXPIRY_BUFFER = timedelta(minutes=5)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Credential(BaseModel):
    """
    Renewable QuickBooks access/refresh token pair.

    ``issued_at`` is stamped locally when the token endpoint answers; the
    value returned by Intuit (if any) is never trusted.

    Attributes:
        access_token: Bearer token for QuickBooks API calls
        refresh_token: Token exchanged for a new pair at the token endpoint
        token_type: Token type reported by Intuit (normally "bearer")
        issued_at: When this pair was received
        expires_in: Access token lifetime in seconds
        x_refresh_token_expires_in: Refresh token lifetime in seconds
    """

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    issued_at: datetime = Field(default_factory=utcnow)
    expires_in: int = Field(default=3600, ge=0)
    x_refresh_token_expires_in: Optional[int] = Field(default=None, ge=0)

    @classmethod
    def from_token_response(cls, payload: dict, issued_at: Optional[datetime] = None) -> "Credential":
        """Build a credential from a token endpoint JSON body."""
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type") or "bearer",
            issued_at=issued_at or utcnow(),
            expires_in=int(payload.get("expires_in", 3600)),
            x_refresh_token_expires_in=payload.get("x_refresh_token_expires_in"),
        )

    @property
    def expires_at(self) -> datetime:
        """Absolute access token expiry."""
        return self.issued_at + timedelta(seconds=self.expires_in)


class RealmBinding(BaseModel):
    """
    Association between a QuickBooks realm and its FIRS business identifiers.

    At most one binding exists per realm; creating a second one is rejected.
    """

    id: Optional[str] = None
    realm_id: str = Field(min_length=1, description="QuickBooks company ID")
    firs_business_id: str = Field(min_length=1, description="FIRS business identifier")
    tin: str = Field(min_length=1, description="Taxpayer identification number")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
