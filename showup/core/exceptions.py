class ShowupError(Exception):
    """Base exception for the Showup backend.

    ``message`` is the single short string returned to the client.
    """

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ShowupError):
    """Raised when input is missing or malformed. The message names the field."""

    status_code = 400


class AuthError(ShowupError):
    """Raised when a credential is missing, invalid or expired.

    ``forbidden=True`` marks an authenticated but disallowed caller
    (deactivated account) and maps to 403.
    """

    def __init__(self, message: str, forbidden: bool = False):
        self.status_code = 403 if forbidden else 401
        super().__init__(message)


class ConflictError(ShowupError):
    """Raised on a duplicate unique key (email, username) or a state that forbids the action."""

    status_code = 409


class NotFoundError(ShowupError):
    """Raised when a referenced record is absent or belongs to another user."""

    status_code = 404


class ExternalServiceError(ShowupError):
    """Raised when the payment provider, chain client or coach backend fails.

    The client sees a generic message; ``detail`` is for server logs only.
    """

    def __init__(self, service: str, detail: str):
        self.service = service
        self.detail = detail
        super().__init__(f"{service} is unavailable")


class InternalError(ShowupError):
    """Raised on an unexpected store or logic failure."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__("Internal server error")
