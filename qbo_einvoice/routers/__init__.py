"""API routers for all endpoints."""

from qbo_einvoice.routers import auth, companies, customers, system, webhook

__all__ = [
    "auth",
    "companies",
    "customers",
    "system",
    "webhook",
]
