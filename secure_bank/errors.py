"""
Error Taxonomy

Every failure that can reach a client is a BankError subclass carrying a
stable code and the HTTP status it maps to. Infrastructure failures are
reported as InternalError with a generic message.
"""


class BankError(Exception):
    """Base class for errors surfaced to API clients"""

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(BankError):
    """Missing or malformed input"""
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Missing required fields"


class DuplicateEmail(BankError):
    """Signup attempted with an email that is already registered"""
    code = "DUPLICATE_EMAIL"
    status_code = 400
    default_message = "Email already exists"


class InvalidCredentials(BankError):
    """Unknown email or wrong password; the two are never distinguished"""
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid credentials"


class Unauthenticated(BankError):
    """Missing or invalid bearer credential"""
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Invalid token"


class AccessDenied(BankError):
    """Resource does not exist or belongs to another user"""
    code = "ACCESS_DENIED"
    status_code = 403
    default_message = "Access denied"


class InternalError(BankError):
    """Storage or infrastructure failure"""
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal error"
