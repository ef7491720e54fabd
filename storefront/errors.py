"""
Error taxonomy for the Storefront service.

Every error carries the HTTP status code it is rendered with; the handler
registered in main.py turns them into {"detail": message} responses.
"""


class StorefrontError(Exception):
    """Base class for all domain errors."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotAuthenticated(StorefrontError):
    status_code = 401

    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(detail)


class NotAuthorized(StorefrontError):
    status_code = 403

    def __init__(self, detail: str = "Not authorized"):
        super().__init__(detail)


class NotFound(StorefrontError):
    status_code = 404


class ValidationError(StorefrontError):
    status_code = 400


class TransitionNotAllowed(StorefrontError):
    """Raised when the requested status is not reachable from the current one."""
    status_code = 400

    def __init__(self, current: str, requested: str):
        super().__init__(f"Invalid status transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class ProviderError(StorefrontError):
    """
    Payment provider problem.

    Bad webhook signatures are client errors (400); failed calls to the
    provider are reported as 502.
    """
    status_code = 400

    def __init__(self, detail: str, status_code: int = 400):
        super().__init__(detail)
        self.status_code = status_code
