"""Error taxonomy for the Verity Gem API.

Every error raised by the business layer derives from ShopError and is
translated into a JSON response by the handler registered in main.py.
"""


class ShopError(Exception):
    """Base exception for all shop errors."""

    pass


class ValidationError(ShopError):
    """Raised when input is malformed or a required field is missing."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(ShopError):
    """Raised when a product, cart line or order is missing or not visible to the caller."""

    def __init__(self, resource: str, key: str | None = None):
        self.resource = resource
        self.key = key
        msg = f"{resource} not found"
        if key:
            msg = f"{msg}: {key}"
        super().__init__(msg)


class AuthError(ShopError):
    """Raised when the session token is missing, expired or invalid."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class ForbiddenError(ShopError):
    """Raised when an authenticated caller lacks the role a route needs."""

    def __init__(self, message: str = "Admins only"):
        super().__init__(message)


class DependencyError(ShopError):
    """Raised when the database, mail server or rate service fails."""

    def __init__(self, service: str, reason: str):
        self.service = service
        self.reason = reason
        super().__init__(f"{service} unavailable: {reason}")
