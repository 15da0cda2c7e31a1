"""
Global error handling middleware.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

from orchard360.domain.errors import (
    ParseError,
    ReferentialIntegrityError,
    StorageUnavailable,
    ValidationError,
)
from orchard360.infrastructure.remote_storage import ExternalAPIError


logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.
    
    Maps domain errors to consistent error responses and catches
    anything unhandled.
    """
    
    async def dispatch(self, request: Request, call_next: Callable):
        """
        Process the request and handle any exceptions.
        
        Args:
            request: The incoming request
            call_next: The next middleware or route handler
            
        Returns:
            Response object
        """
        extra = {"path": request.url.path, "method": request.method}
        
        try:
            response = await call_next(request)
            return response
        
        except ReferentialIntegrityError as e:
            logger.warning(f"Delete blocked: {e.message}", extra=extra)
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={
                    "error": "Entity has dependents",
                    "detail": e.message,
                    "dependents": e.dependents,
                }
            )
        
        except (ValidationError, ParseError) as e:
            logger.warning(f"Rejected request: {e.message}", extra=extra)
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "error": "Invalid request",
                    "detail": e.message,
                }
            )
        
        except StorageUnavailable as e:
            logger.error(f"Storage unavailable: {e.message}", extra=extra)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": "Storage unavailable",
                    "detail": e.message,
                }
            )
        
        except ExternalAPIError as e:
            logger.error(
                f"External API error: {str(e)}",
                extra={**extra, "status_code": e.status_code},
            )
            # Pass through the original status code from the external API
            return JSONResponse(
                status_code=e.status_code,
                content={
                    "error": "External API error",
                    "detail": e.message,
                }
            )
        
        except ValueError as e:
            logger.warning(f"Validation error: {str(e)}", extra=extra)
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "error": "Invalid request",
                    "detail": str(e),
                }
            )
        
        except Exception as e:
            logger.exception(f"Unhandled exception: {str(e)}", extra=extra)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "Internal server error",
                    "detail": "An unexpected error occurred",
                }
            )
