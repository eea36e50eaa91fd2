"""
Error taxonomy for connect and publish flows.

Every error carries a human-readable ``message`` and the HTTP status the API
answers with when the error escapes a route. Inside a multi-platform publish
the same errors are turned into per-platform failure entries instead.
"""


class MultipostError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MultipostError):
    """Missing or malformed input, rejected before any external call."""
    status_code = 400


class NotConnected(MultipostError):
    """No credential row for the (user, platform) pair."""
    status_code = 404


class AuthExchangeFailed(MultipostError):
    """The platform rejected an authorization code or credentials."""
    status_code = 400


class ReauthRequired(MultipostError):
    """Stored credentials are unusable; the user must connect again."""
    status_code = 401


class UploadFailed(MultipostError):
    status_code = 502


class PublishFailed(MultipostError):
    status_code = 502


class Conflict(MultipostError):
    """A unique value (such as an email) is already taken."""
    status_code = 409
