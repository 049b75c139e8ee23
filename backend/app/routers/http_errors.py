"""
Translation of service exceptions into HTTP responses.

  ItemNotFound / OrderNotFound          404
  InvalidTransition                     409
  ConcurrentConfirmationConflict        409
  any other PipelineError               400
"""

from fastapi import HTTPException

from app.services.errors import (
    ConcurrentConfirmationConflict,
    InvalidTransition,
    ItemNotFound,
    OrderNotFound,
    PipelineError,
)

_STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (ItemNotFound, 404),
    (OrderNotFound, 404),
    (InvalidTransition, 409),
    (ConcurrentConfirmationConflict, 409),
]


def to_http_exception(exc: PipelineError) -> HTTPException:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return HTTPException(
        status_code=status,
        detail={"error": exc.error_code, "message": exc.message},
    )
