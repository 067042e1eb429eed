"""
Card Shop Exception Hierarchy

Structured exception classes for the checkout core.
All exceptions include code, message, and details for audit trail and
debugging. The order workflow converts these into user-facing results;
nothing in this module should reach the client as a raw traceback.

Exception Hierarchy:
    CardShopError
    ├── InventoryError
    │   └── StockShortageError
    ├── OrderError
    │   ├── OrderNotFoundError
    │   ├── InvalidStateError
    │   └── InvalidCartError
    └── UserNotFoundError
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class CardShopError(Exception):
    """
    Base exception for all Card Shop custom errors.

    Attributes:
        message: Human-readable error description (safe to show buyers)
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "CARDSHOP_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(CardShopError):
    """Base exception for inventory errors."""
    default_code = "INVENTORY_ERROR"
    default_severity = "P1"


class StockShortageError(InventoryError):
    """
    Requested quantity exceeds available stock for one or more items.

    ``shortages`` is a list of ``{"product_id", "name", "requested", "available"}``.
    """
    default_code = "STOCK_SHORTAGE"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        shortages: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ):
        self.shortages = list(shortages or [])
        details = kwargs.pop("details", {})
        details.update({"shortages": self.shortages})
        super().__init__(message, details=details, **kwargs)

    @classmethod
    def from_shortages(cls, shortages: List[Dict[str, Any]]) -> "StockShortageError":
        item_list = ", ".join(
            f"{s['name']} (available: {s['available']})" for s in shortages
        )
        return cls(f"Insufficient stock: {item_list}", shortages=shortages)


# =============================================================================
# ORDER ERRORS
# =============================================================================

class OrderError(CardShopError):
    """Base exception for order workflow errors."""
    default_code = "ORDER_ERROR"
    default_severity = "P2"


class OrderNotFoundError(OrderError):
    """Operation references an order number that doesn't exist."""
    default_code = "ORDER_NOT_FOUND"
    default_severity = "P3"

    def __init__(self, order_ref: Any, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"order": order_ref})
        super().__init__("Order not found", details=details, **kwargs)


class InvalidStateError(OrderError):
    """Operation attempted against an order in a state that forbids it."""
    default_code = "INVALID_ORDER_STATE"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "status": status,
            "payment_status": payment_status,
        })
        super().__init__(message, details=details, **kwargs)


class InvalidCartError(OrderError):
    """Empty cart or malformed line items."""
    default_code = "INVALID_CART"
    default_severity = "P3"


# =============================================================================
# USER ERRORS
# =============================================================================

class UserNotFoundError(CardShopError):
    """Buyer email doesn't resolve to an account."""
    default_code = "USER_NOT_FOUND"
    default_severity = "P3"

    def __init__(self, email: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"email": email})
        super().__init__("User not found", details=details, **kwargs)


# =============================================================================
# ERROR CODE REGISTRY
# =============================================================================

# HTTP status for each error code, used by the API layer
ERROR_HTTP_STATUS: Dict[str, int] = {
    "STOCK_SHORTAGE": 409,
    "ORDER_NOT_FOUND": 404,
    "INVALID_ORDER_STATE": 409,
    "RESERVATION_EXPIRED": 410,
    "INVALID_CART": 400,
    "USER_NOT_FOUND": 404,
    "RATE_LIMITED": 429,
    "INTERNAL_ERROR": 500,
}


def http_status_for(code: Optional[str]) -> int:
    """Map an error code to an HTTP status (400 for unknown codes)."""
    if code is None:
        return 200
    return ERROR_HTTP_STATUS.get(code, 400)
