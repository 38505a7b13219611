"""Core package

Exposes only the light-weight symbols to avoid import cycles between modules.
"""
from .config import get_settings
from .container import container
from .responses import (
    APIResponse, success_response, error_response,
    BusinessException, AuthenticationException,
    AuthorizationException, NotFoundException,
    ExternalServiceException,
)

__all__ = [
    'get_settings',
    'container',
    'APIResponse',
    'success_response',
    'error_response',
    'BusinessException',
    'AuthenticationException',
    'AuthorizationException',
    'NotFoundException',
    'ExternalServiceException',
]
