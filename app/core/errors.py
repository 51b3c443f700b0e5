"""Domain exceptions for the storefront services.

Every error carries a human readable message plus optional ``details`` that
the API layer merges into the error envelope so clients can react to the
conflicting values.
"""

from typing import Any, Dict, List, Optional


class ShopError(Exception):
    """Base exception for all storefront errors."""

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)


class InvalidInputError(ShopError):
    """Raised when a request is missing or has malformed fields."""

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)


class NotFoundError(ShopError):
    """Raised when a product, order or user id does not resolve."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        if resource_id is not None:
            super().__init__(message, id=resource_id)
        else:
            super().__init__(message)


class ConflictError(ShopError):
    """Raised when a request conflicts with the current stored state."""

    pass


class InsufficientStockError(ConflictError):
    def __init__(self, product_id: str, name: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough stock for {name}. Available: {available}",
            product=product_id,
            available=available,
            requested=requested,
        )


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, attempted: str, allowed: List[str]):
        self.current = current
        self.attempted = attempted
        self.allowed = allowed
        super().__init__(
            f"Invalid status transition from {current} to {attempted}",
            currentStatus=current,
            attemptedStatus=attempted,
            allowedTransitions=allowed,
        )


class NotAuthorizedError(ShopError):
    """Raised when the caller may not act on the resource."""

    pass


class UnavailableProductsError(ShopError):
    """Raised when a cart names products that are missing or inactive."""

    def __init__(self, product_ids: List[Any], message: str = "Some products are unavailable"):
        self.product_ids = [str(p) for p in product_ids]
        super().__init__(message, invalidProducts=self.product_ids)


class CartStockError(ShopError):
    def __init__(self, issues: List[Dict[str, Any]]):
        self.issues = issues
        super().__init__("Some products don't have enough stock", stockIssues=issues)
