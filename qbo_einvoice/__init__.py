"""QuickBooks Online to FIRS e-invoicing bridge."""

__version__ = "0.1.0"
