"""
Shared response models and exception classes
"""
from typing import Generic, TypeVar, Optional, Any
from pydantic import BaseModel

T = TypeVar('T')

class APIResponse(BaseModel, Generic[T]):
    """Standard API response envelope"""
    status: str  # "success" or "error"
    data: Optional[T] = None
    message: Optional[str] = None
    error_code: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "success",
                "data": {"key": "value"},
                "message": "Operation completed"
            }
        }

# Custom exceptions
class BusinessException(Exception):
    """Business rule violation"""
    def __init__(self, message: str, error_code: str = None, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)

class AuthenticationException(BusinessException):
    """Authentication failure"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, "AUTH_FAILED", 401)

class AuthorizationException(BusinessException):
    """Authorization failure"""
    def __init__(self, message: str = "Access denied"):
        super().__init__(message, "ACCESS_DENIED", 403)

class NotFoundException(BusinessException):
    """Missing resource"""
    def __init__(self, message: str = "Requested resource was not found"):
        super().__init__(message, "NOT_FOUND", 404)

class ExternalServiceException(BusinessException):
    """Upstream service failure"""
    def __init__(self, service_name: str, message: str = None):
        msg = message or f"Call to {service_name} failed"
        super().__init__(msg, "EXTERNAL_SERVICE_ERROR", 502)

# Response helpers
def success_response(data: Any = None, message: str = "ok") -> APIResponse:
    """Build a success envelope"""
    return APIResponse(status="success", data=data, message=message)

def error_response(
    message: str = "An error occurred",
    error_code: str = None,
    data: Any = None
) -> APIResponse:
    """Build an error envelope"""
    return APIResponse(
        status="error",
        message=message,
        error_code=error_code,
        data=data
    )
