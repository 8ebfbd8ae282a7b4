"""Database package for marketplace payments."""
from .connection import build_engine, build_session_factory, init_db
from .models import (
    ActiveFeature,
    AdFeatureType,
    AdPackage,
    AdPackageFeature,
    Base,
    FeatureKind,
    PremiumPackage,
    ProfileType,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from .repository import CatalogRepository, FeatureRepository, TransactionRepository

__all__ = [
    "ActiveFeature",
    "AdFeatureType",
    "AdPackage",
    "AdPackageFeature",
    "Base",
    "CatalogRepository",
    "FeatureKind",
    "FeatureRepository",
    "PremiumPackage",
    "ProfileType",
    "Transaction",
    "TransactionRepository",
    "TransactionStatus",
    "TransactionType",
    "User",
    "build_engine",
    "build_session_factory",
    "init_db",
]
