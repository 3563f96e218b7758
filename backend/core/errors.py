"""Error taxonomy for stock operations and its mapping to HTTP responses."""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StockError(Exception):
    kind = "StockError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.kind}


class NotFound(StockError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStock(StockError):
    kind = "InsufficientStock"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, available: int, requested: Optional[int] = None):
        message = f"Insufficient stock. Available: {available}"
        if requested is not None:
            message = f"{message}, requested: {requested}"
        super().__init__(message)
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["available"] = self.available
        return out


class InvalidInput(StockError):
    kind = "InvalidInput"
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(StockError):
    """Retryable: the item row could not be locked or serialized in time."""

    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(StockError)
    async def stock_error_handler(request: Request, exc: StockError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(content=exc.to_dict(), status_code=exc.status_code)
