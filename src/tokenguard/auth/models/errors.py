"""Exception hierarchy for authenticated client failures.

Every error carries a human-readable message. Forced-logout errors also carry
the path the user should return to after logging in again.
"""

from __future__ import annotations

NETWORK_ERROR_MESSAGE = "Network request error"
PERMISSION_DENIED_MESSAGE = "Insufficient permissions"
SERVER_ERROR_MESSAGE = "Server error"
UNKNOWN_ERROR_MESSAGE = "Unknown error"
SESSION_EXPIRED_MESSAGE = "Login expired, please log in again"


class ClientError(Exception):
    """Base exception for all authenticated client errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NetworkError(ClientError):
    """Raised when a request never reached the server or no response came back."""

    def __init__(self, message: str = NETWORK_ERROR_MESSAGE):
        super().__init__(message)


class AuthExpiredError(ClientError):
    """Raised when a request is still rejected as expired after its one retry."""

    pass


class ForcedLogoutError(ClientError):
    """Raised when the session is no longer valid and credentials were cleared.

    Attributes:
        return_path: Path to return to after re-authentication
        login_url: Login URL with the return path attached
    """

    def __init__(
        self,
        message: str = SESSION_EXPIRED_MESSAGE,
        return_path: str | None = None,
        login_url: str | None = None,
    ):
        super().__init__(message)
        self.return_path = return_path
        self.login_url = login_url


class RefreshFailedError(ForcedLogoutError):
    """Raised when the access token could not be renewed.

    Terminal for the session: shared by the caller that triggered the refresh
    and every caller that was waiting on it.
    """

    pass


class BusinessError(ClientError):
    """Raised when the server rejected a request at the application level."""

    def __init__(self, code: int | None, message: str = UNKNOWN_ERROR_MESSAGE):
        super().__init__(message)
        self.code = code


class PermissionDeniedError(BusinessError):
    """Raised for business code 401: the user lacks privileges.

    Not a token problem, so it never triggers a refresh or a logout.
    """

    def __init__(self, message: str = PERMISSION_DENIED_MESSAGE):
        super().__init__(401, message)


class ServerError(ClientError):
    """Raised for HTTP 5xx responses and business code 500."""

    def __init__(self, message: str = SERVER_ERROR_MESSAGE, status: int | None = None):
        super().__init__(message)
        self.status = status
