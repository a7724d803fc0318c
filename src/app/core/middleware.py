"""
Global exception handlers
"""
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
import logging

from core.responses import error_response, BusinessException, ValidationException

logger = logging.getLogger(__name__)

async def business_exception_handler(request: Request, exc: BusinessException):
    """BusinessException -> APIResponse envelope with the exception's status code"""
    if exc.status_code >= 500:
        logger.error(f"Business exception on {request.url.path}: {exc.error_code} {exc.message}")
    else:
        logger.warning(f"Business exception on {request.url.path}: {exc.error_code} {exc.message}")

    data = None
    if isinstance(exc, ValidationException) and exc.errors:
        data = {"errors": exc.errors}

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            message=exc.message,
            error_code=exc.error_code,
            data=data
        ).model_dump()
    )

async def http_exception_handler_custom(request: Request, exc: HTTPException):
    logger.warning(f"HTTP exception: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            message=exc.detail,
            error_code="HTTP_ERROR"
        ).model_dump(),
        headers=getattr(exc, "headers", None)
    )

async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content=error_response(
            message="Internal server error",
            error_code="INTERNAL_SERVER_ERROR"
        ).model_dump()
    )

def setup_exception_handlers(app):
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler_custom)
    app.add_exception_handler(Exception, general_exception_handler)
