"""
Custom Exceptions for Shyftcut Entitlements

Hierarchical exception classes for proper error handling across layers.
Limit decisions are plain return values; only infrastructure failures and
explicit gate rejections are raised.
"""

from typing import Optional, Dict, Any


class ShyftcutError(Exception):
    """Base exception for all Shyftcut errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class DatabaseError(ShyftcutError):
    """Raised when the subscription or usage store cannot be reached."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class ConfigurationError(ShyftcutError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class UsageLimitExceeded(ShyftcutError):
    """
    Raised by HTTP gates when a metered action is over its allowance.

    Carries what the upgrade prompt needs: which feature, the cap, how much
    was used and the tier the decision was made for.
    """

    def __init__(
        self,
        feature: str,
        limit: int,
        used: int,
        tier: str,
    ):
        super().__init__(
            f"Usage limit reached for {feature}",
            details={
                "feature": feature,
                "limit": limit,
                "used": used,
                "tier": tier,
                "upgrade_required": True,
            },
        )
        self.feature = feature
        self.limit = limit
        self.used = used
        self.tier = tier
