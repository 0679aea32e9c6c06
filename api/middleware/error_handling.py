from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from core.logging import get_api_logger_safe
from core.utils.exceptions import (
    DuplicateEntryError,
    NoActiveTradeError,
    ParseError,
    RelayError,
    StrategyCalculationError,
)
from api.schemas.responses import ErrorResponse

logger = get_api_logger_safe("api.middleware.error_handling")

# Most specific first; StrikeSelectionError and MarketDataError map via their base
ERROR_STATUS_CODES = (
    (ParseError, 400),
    (NoActiveTradeError, 404),
    (DuplicateEntryError, 409),
    (StrategyCalculationError, 422),
)


def status_code_for(error: Exception) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def _error_body(error: str, message: str, path: str, details=None) -> dict:
    response = ErrorResponse(error=error, message=message, path=path, details=details or None)
    return response.model_dump(mode="json", exclude_none=True)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log("Signal request failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
        status_code=status_code)
    details = dict(exc.details)
    if isinstance(exc, (NoActiveTradeError, DuplicateEntryError)):
        details["symbol"] = exc.symbol
    if isinstance(exc, DuplicateEntryError):
        details["open_trade_id"] = exc.open_trade_id
    return JSONResponse(
        status_code=status_code,
        content=_error_body(type(exc).__name__, exc.message, request.url.path, details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RelayError, relay_error_handler)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Global error handling middleware"""

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException as e:
            # Let FastAPI handle HTTP exceptions normally
            raise e
        except Exception as e:
            logger.error(
                "Unhandled API exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content=_error_body("Internal server error", "An unexpected error occurred",
                                    request.url.path),
            )
