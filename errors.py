"""
Error taxonomy shared by the repositories, the session manager and the API.

Repositories log and re-raise these unchanged; main.py maps them to HTTP
status codes.
"""


class WarehouseError(Exception):
    """Base class for every failure raised by this application."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFound(WarehouseError):
    """Entity id is absent, or the entity is already resolved."""


class ValidationError(WarehouseError):
    """Input is malformed or out of range."""


class PermissionDenied(WarehouseError):
    """Caller is not allowed to perform the operation."""


class RemoteFailure(WarehouseError):
    """The document store or identity provider rejected an operation."""
