"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class DashboardError(Exception):
    """Base exception for all dashboard errors."""

    pass


class BackendError(DashboardError):
    """Raised when a backend API call fails (transport, status, or payload)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        if status_code is not None:
            super().__init__(f"Backend error ({status_code}): {message}")
        else:
            super().__init__(f"Backend error: {message}")


class BackendTimeoutError(BackendError):
    """Raised when the backend does not answer within the request timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Request timeout - server took longer than {timeout_seconds:g}s to respond"
        )


class InvalidAccountError(DashboardError):
    """Raised when the account email is missing or malformed."""

    def __init__(self, value: str | None) -> None:
        self.value = value
        super().__init__("Invalid email address. Please log out and log in again.")


class InvalidPurchaseError(DashboardError):
    """Raised when a purchase request fails validation before checkout."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class CheckoutError(DashboardError):
    """Raised when the checkout call does not return a redirect target."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Checkout failed: {message}")


class HandleUnavailableError(DashboardError):
    """Raised when the auth provider handle could not be acquired."""

    def __init__(self, reason: str = "provider_unavailable") -> None:
        self.reason = reason
        super().__init__(f"Auth provider unavailable: {reason}")
