"""
Common response model and exception classes
"""
from typing import Generic, TypeVar, Optional, Any
from pydantic import BaseModel, ConfigDict

T = TypeVar('T')

class APIResponse(BaseModel, Generic[T]):
    """Standard API response envelope"""
    status: str  # "success" or "error"
    data: Optional[T] = None
    message: Optional[str] = None
    error_code: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "success",
                "data": {"key": "value"},
                "message": "Operation completed successfully."
            }
        }
    )

# Custom exceptions
class BusinessException(Exception):
    """Business logic error"""
    def __init__(self, message: str, error_code: str = None, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)

class NotFoundException(BusinessException):
    def __init__(self, message: str = "Requested resource was not found"):
        super().__init__(message, "NOT_FOUND", 404)

class ConflictException(BusinessException):
    def __init__(self, message: str = "Resource is in a conflicting state"):
        super().__init__(message, "CONFLICT", 409)

class ValidationException(BusinessException):
    def __init__(self, message: str = "Input data is invalid", errors: list = None):
        super().__init__(message, "VALIDATION_ERROR", 422)
        self.errors = errors or []

class ExternalServiceException(BusinessException):
    """Vendor API call failed"""
    def __init__(self, service_name: str, message: str = None):
        msg = message or f"Call to {service_name} failed"
        super().__init__(msg, "EXTERNAL_SERVICE_ERROR", 502)

# Webhook processing errors
class SignatureInvalidException(BusinessException):
    """Webhook signature missing or wrong; never retried into success"""
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, "SIGNATURE_INVALID", 401)

class MalformedPayloadException(BusinessException):
    """Payload cannot be parsed; a retry will not fix it"""
    def __init__(self, message: str = "Malformed webhook payload"):
        super().__init__(message, "MALFORMED_PAYLOAD", 400)

class InvalidTransitionException(BusinessException):
    """Payment state machine rejected the event; needs manual reconciliation"""
    def __init__(self, current_status: str, outcome: str, payment_id: Optional[str] = None):
        self.current_status = current_status
        self.outcome = outcome
        self.payment_id = payment_id
        super().__init__(
            f"Cannot apply '{outcome}' to payment {payment_id or '<unknown>'} in status '{current_status}'",
            "INVALID_TRANSITION",
            500,
        )

class UnknownCustomerException(BusinessException):
    def __init__(self, message: str = "No user account matches the payment customer"):
        super().__init__(message, "UNKNOWN_CUSTOMER", 500)

class DatastoreException(BusinessException):
    """Datastore call failed; the vendor retry is safe"""
    def __init__(self, message: str = "Datastore operation failed"):
        super().__init__(message, "DATASTORE_FAILURE", 500)

# Response helpers
def success_response(data: Any = None, message: str = "OK") -> APIResponse:
    return APIResponse(status="success", data=data, message=message)

def error_response(
    message: str = "An error occurred",
    error_code: str = None,
    data: Any = None
) -> APIResponse:
    return APIResponse(
        status="error",
        message=message,
        error_code=error_code,
        data=data
    )

