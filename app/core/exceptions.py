from typing import Optional, Any

class StorefrontError(Exception):
    """
    Base exception for the storefront application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)

class ResourceNotFoundError(StorefrontError):
    """
    Raised when a requested resource is not found.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)

class AuthenticationError(StorefrontError):
    """
    Raised when authentication fails.
    """
    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401, details=details)

class ValidationError(StorefrontError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)

class ExternalServiceError(StorefrontError):
    """
    Raised when an external service fails.
    """
    def __init__(self, message: str = "External service error", details: Optional[Any] = None):
        super().__init__(message, code="EXTERNAL_SERVICE_ERROR", status_code=502, details=details)

class PaymentGatewayError(ExternalServiceError):
    """
    Raised when Paystack rejects or fails a request.

    `gateway_status` is Paystack's HTTP status, when a response arrived.
    """
    def __init__(self, message: str = "Payment gateway error", gateway_status: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.code = "PAYMENT_GATEWAY_ERROR"
        self.gateway_status = gateway_status
