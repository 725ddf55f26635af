"""Application exceptions."""


class TutorConnectError(Exception):
    """Base exception for TutorConnect."""

    def __init__(self, message: str, code: str = "ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidInputError(TutorConnectError):
    """Form or message input rejected before reaching the backend."""

    def __init__(self, message: str):
        super().__init__(message=message, code="INVALID_INPUT")


class BackendError(TutorConnectError):
    """A backend operation failed."""

    def __init__(self, message: str, code: str = "BACKEND_ERROR"):
        super().__init__(message=message, code=code)


class AuthError(BackendError):
    """The auth provider rejected a sign-in or sign-up."""


class PermissionDeniedError(BackendError):
    """The backend refused a write."""

    def __init__(self, message: str):
        super().__init__(message=message, code="WRITE_DENIED")
