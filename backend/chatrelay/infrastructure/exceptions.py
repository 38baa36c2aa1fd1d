"""
Custom Exceptions for Chat Relay

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any


class ChatRelayError(Exception):
    """Base exception for all Chat Relay errors."""
    
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


class ValidationError(ChatRelayError):
    """Raised when input validation fails."""
    pass


class AuthenticationError(ChatRelayError):
    """Raised when credentials are missing or invalid."""
    pass


class DatabaseError(ChatRelayError):
    """Raised when database operations fail."""
    
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


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class DuplicateError(DatabaseError):
    """Raised when attempting to create a duplicate resource."""
    pass


class ConfigurationError(ChatRelayError):
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


class SubscriptionRequiredError(ChatRelayError):
    """Raised by the access gate when the user's subscription is inactive."""
    
    redirect = "/update-plan"
    
    def __init__(
        self,
        plan: str,
        subscription_status: Optional[str],
        trial_ends_at: Optional[str],
    ):
        super().__init__(
            "Active subscription required",
            details={
                "plan": plan,
                "subscriptionStatus": subscription_status,
                "trialEndsAt": trial_ends_at,
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        """Structured denial the frontend uses to render the upgrade screen."""
        return {
            "error": "subscription_required",
            "redirect": self.redirect,
            "metadata": self.details,
        }
