"""Error taxonomy shared by the web routes, the JSON API and the services."""


class LibraryError(Exception):
    """Base error carrying an HTTP status and a stable error code."""

    status_code = 400
    code = "library-error"

    def __init__(self, message, *, status_code=None, code=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.message = message

    def to_dict(self):
        return {"error": self.code, "message": self.message}


class UnauthenticatedError(LibraryError):
    status_code = 401
    code = "unauthenticated"


class PermissionDeniedError(LibraryError):
    status_code = 403
    code = "permission-denied"


class ValidationError(LibraryError):
    status_code = 400
    code = "invalid-argument"


class HierarchyError(LibraryError):
    """A folder/category/document move or delete would break the hierarchy."""

    status_code = 409
    code = "failed-precondition"


class NotFoundError(LibraryError):
    status_code = 404
    code = "not-found"


class InternalError(LibraryError):
    status_code = 500
    code = "internal"


class InvalidTokenError(UnauthenticatedError):
    code = "invalid-token"


class TokenExpiredError(UnauthenticatedError):
    code = "token-expired"
