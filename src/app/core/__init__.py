"""Core package (kept light)

Only dependency-free symbols are exported to avoid import cycles.
"""
from .config import settings
from .responses import (
    APIResponse, success_response, error_response,
    BusinessException, NotFoundException,
)

__all__ = [
    'settings',
    'APIResponse',
    'success_response',
    'error_response',
    'BusinessException',
    'NotFoundException',
]
