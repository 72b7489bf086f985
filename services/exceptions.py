"""
Service Exceptions

Custom exception classes for credential and subscription errors.
Each carries a stable machine-readable code; translating codes into a
transport status is left to the request-handling layer.
"""


class ErrorCodes:
    """Stable error codes shared by all service exceptions."""

    # Validation
    INVALID_EMAIL = "INVALID_EMAIL"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"

    # Conflict
    USER_EXISTS = "USER_EXISTS"
    ALREADY_SUBSCRIBED = "ALREADY_SUBSCRIBED"

    # Unauthorized
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_TOKEN = "INVALID_TOKEN"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"

    # Not found
    USER_NOT_FOUND = "USER_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"

    # Security / policy
    WEBHOOK_VERIFICATION_FAILED = "WEBHOOK_VERIFICATION_FAILED"
    INVALID_PLAN = "INVALID_PLAN"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    NO_CUSTOMER = "NO_CUSTOMER"

    # Collaborators
    PROVIDER_ERROR = "PROVIDER_ERROR"


class ServiceError(Exception):
    """
    Base exception for all credential and subscription errors.

    All service exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    default_code = "SERVICE_ERROR"

    def __init__(self, message: str, code: str = None, details: dict = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class ValidationError(ServiceError):
    """Malformed email, weak password, or unparseable webhook payload."""

    default_code = ErrorCodes.INVALID_PAYLOAD


class ConflictError(ServiceError):
    """The user or subscription already exists."""

    default_code = ErrorCodes.USER_EXISTS


class UnauthorizedError(ServiceError):
    """
    Invalid credentials, invalid or expired token, or unverified email.

    Token failures never say whether the token was unknown, expired or
    malformed.
    """

    default_code = ErrorCodes.INVALID_CREDENTIALS


class NotFoundError(ServiceError):
    default_code = ErrorCodes.USER_NOT_FOUND


class SecurityRejectionError(ServiceError):
    """Webhook signature verification failed; the payload was not parsed."""

    default_code = ErrorCodes.WEBHOOK_VERIFICATION_FAILED


class PolicyRejectionError(ServiceError):
    """Unknown plan or price, or an operation the provider cannot perform."""

    default_code = ErrorCodes.INVALID_PLAN


class PaymentProviderError(ServiceError):
    """
    Raised when the payment provider rejects or fails a request.

    Attributes:
        original_error: The exception raised by the provider SDK, if any
    """

    default_code = ErrorCodes.PROVIDER_ERROR

    def __init__(self, message: str, code: str = None, original_error: Exception = None):
        super().__init__(message, code=code)
        self.original_error = original_error
