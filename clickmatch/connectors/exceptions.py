"""Custom exceptions for stores and external collaborators."""

from __future__ import annotations


class ConnectorError(Exception):
    """Base exception for connector errors."""

    pass


class StoreQueryError(ConnectorError):
    """Raised when a click event store query fails."""

    pass


class StoreTimeoutError(StoreQueryError):
    """Raised when a click event store query exceeds its timeout."""

    pass


class AuthenticationError(ConnectorError):
    """Raised when credentials for an external API are missing or rejected."""

    pass


class LeadFormError(ConnectorError):
    """Raised when the lead-form submission API call fails."""

    pass
