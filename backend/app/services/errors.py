"""
Pipeline exceptions and review reasons.

Services raise PipelineError subclasses; routers translate them into
HTTPException responses. Conditions that are recovered locally (unknown
vendor, unparseable or partial document) are not exceptions but are recorded
on the email row as a ReviewReason. Enrichment misses never set a review
reason; the item keeps its vendor-reported fields.
"""

from enum import Enum
from typing import Optional


class ReviewReason(str, Enum):
    UNKNOWN_VENDOR = "unknown_vendor"
    PARSE_FAILURE = "parse_failure"
    PARTIAL_PARSE = "partial_parse"


class PipelineError(Exception):
    """Base class for errors raised by the intake pipeline and state machine."""
    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class ParseFailure(PipelineError):
    """Raised by a parser when the document structure is not recognised at all."""
    def __init__(self, message: str, vendor: Optional[str] = None):
        super().__init__(message, "parse_failure")
        self.vendor = vendor


class InvalidTransition(PipelineError):
    """Raised when an item or order is not in a state that allows the requested edge."""
    def __init__(self, item_id: str, current: Optional[str], target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot move item {item_id} from {current!r} to {target!r}",
            "invalid_transition",
        )
        self.item_id = item_id
        self.current = current
        self.target = target


class ConcurrentConfirmationConflict(PipelineError):
    """Raised when every requested item lost a race to another confirmation."""
    def __init__(self, order_id: str, item_ids: list[str]):
        super().__init__(
            f"Items {item_ids} of order {order_id} were changed by another request",
            "concurrent_conflict",
        )
        self.order_id = order_id
        self.item_ids = item_ids


class ItemNotFound(PipelineError):
    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} not found", "item_not_found")
        self.item_id = item_id


class OrderNotFound(PipelineError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found", "order_not_found")
        self.order_id = order_id
