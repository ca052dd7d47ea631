"""
auth/errors.py -- Error taxonomy for the authentication subsystem.

Every failure an auth flow can report is one AuthError subclass. Each class
carries its machine-readable code, HTTP status and default message, so the
route layer never picks status codes itself: api/main.py renders any AuthError
into the response envelope.

clears_cookies marks failures that invalidate a token's trust (expired,
malformed, user gone, deactivated). The exception handler deletes both auth
cookies for those so the client cannot retry with a known-bad credential.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication error."
    clears_cookies: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        status_code: int | None = None,
        clears_cookies: bool | None = None,
    ) -> None:
        self.message = message or self.message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        if clears_cookies is not None:
            self.clears_cookies = clears_cookies
        super().__init__(self.message)


class ValidationFailed(AuthError):
    code = "validation_failed"
    status_code = 400
    message = "Request validation failed."


class EmailInUse(AuthError):
    code = "email_in_use"
    status_code = 409
    message = "Email already in use."


class InvalidCredentials(AuthError):
    # Same message for unknown email and wrong password (no user enumeration).
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid credentials."


class OAuthOnlyAccount(AuthError):
    code = "oauth_only_account"
    status_code = 401
    message = "This account uses Google sign-in. Please login with Google."


class MissingToken(AuthError):
    code = "missing_token"
    status_code = 401
    message = "Authentication token required."


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 401
    message = "Token expired. Please login again."
    clears_cookies = True


class TokenMalformed(AuthError):
    code = "token_malformed"
    status_code = 401
    message = "Token is malformed."
    clears_cookies = True


class TokenInvalid(AuthError):
    code = "token_invalid"
    status_code = 401
    message = "Token verification failed."
    clears_cookies = True


class Unauthenticated(AuthError):
    code = "unauthenticated"
    status_code = 401
    message = "Authentication failed."


class UserNotFound(AuthError):
    code = "user_not_found"
    status_code = 404
    message = "User not found."


class AccountDeactivated(AuthError):
    code = "account_deactivated"
    status_code = 401
    message = "Account deactivated."
    clears_cookies = True


class MissingEmail(AuthError):
    code = "missing_email"
    status_code = 401
    message = "No email provided by the identity provider."


class ProviderConflict(AuthError):
    code = "provider_conflict"
    status_code = 500
    message = "Email already associated with a different provider."


class UserCreationFailed(AuthError):
    code = "user_creation_failed"
    status_code = 500
    message = "Failed to create user."


class OAuthUnavailable(AuthError):
    code = "oauth_unavailable"
    status_code = 503
    message = "OAuth provider is not configured."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    message = "You do not have permission to perform this action."


class ServerError(AuthError):
    code = "server_error"
    status_code = 500
    message = "An unexpected error occurred."
