"""Payment gateway integration and webhook reconciliation for the marketplace."""

__version__ = "0.1.0"
