"""Typed failures raised by the marketplace service and mapped to HTTP by the routes."""
from __future__ import annotations

from typing import List, Optional


class MarketplaceError(Exception):
    status_code = 500
    name = "Internal Server Error"

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        payload = {"error": self.name, "details": self.message}
        if self.details:
            payload["errors"] = list(self.details)
        return payload


class ValidationError(MarketplaceError):
    status_code = 400
    name = "Bad Request"


class BusinessRuleError(MarketplaceError):
    """A well-formed request that the current state does not allow (stock, balance)."""

    status_code = 400
    name = "Bad Request"


class NotFoundError(MarketplaceError):
    status_code = 404
    name = "Not Found"


class AuthenticationError(MarketplaceError):
    status_code = 401
    name = "Unauthorized"


class PermissionDeniedError(MarketplaceError):
    status_code = 403
    name = "Forbidden"
