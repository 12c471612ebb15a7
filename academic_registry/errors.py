class RegistryError(Exception):
    """Base class for errors raised by registry operations."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(RegistryError, ValueError):
    """Input failed validation. Nothing was written."""

    status_code = 400


class NotFoundError(RegistryError, LookupError):
    """A referenced record does not exist or belongs to another school."""

    status_code = 404


class ConflictError(RegistryError):
    """The record already exists or can no longer be changed."""

    status_code = 409
