"""
Exception types shared across the data access layer.
"""

from __future__ import annotations


class AnalyticsAccessError(RuntimeError):
    """
    Base class for data access failures raised as exceptions.
    """


class AuthUnavailable(AnalyticsAccessError):
    """
    Raised when no credential can be obtained.

    Re-authentication is an operator action, so callers surface this as an
    auth-required state and never retry it on their own.
    """


class InvalidQuerySpec(AnalyticsAccessError):
    """
    Raised when a query spec cannot be turned into a request.
    """


class HostModeConflictError(AnalyticsAccessError):
    """
    Raised when the host mode is determined twice with different results.
    """


class UnknownQueryError(AnalyticsAccessError):
    """
    Raised when a query key is not registered.
    """
