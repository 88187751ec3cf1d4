"""Exceptions raised by the service layer and mapped to HTTP responses in main."""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    """Missing or malformed input supplied by the caller."""

    status_code = 400


class AuthError(ShopError):
    status_code = 401


class ForbiddenError(ShopError):
    status_code = 403


class NotFoundError(ShopError):
    status_code = 404


class TransitionError(ShopError):
    """A status change that the workflow does not allow."""

    status_code = 409


class StoreError(ShopError):
    """The database or storage provider failed to complete a core operation.

    Only messages raised with ``public=True`` are shown to callers; the rest
    are replaced by a generic apology in the HTTP response.
    """

    status_code = 500

    def __init__(self, message: str, public: bool = False):
        super().__init__(message)
        self.public = public
