"""Marketplace module - product catalog, carts and point-based checkout"""

from .routes import bp
from .service import MarketplaceService
from .policy import StatusPolicy
from .audit import AuditLogger, AuditParams
from .errors import (
    MarketplaceError,
    ValidationError,
    BusinessRuleError,
    NotFoundError,
    AuthenticationError,
    PermissionDeniedError,
)

__all__ = [
    'bp',
    'MarketplaceService',
    'StatusPolicy',
    'AuditLogger',
    'AuditParams',
    'MarketplaceError',
    'ValidationError',
    'BusinessRuleError',
    'NotFoundError',
    'AuthenticationError',
    'PermissionDeniedError',
]
