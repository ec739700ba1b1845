"""
Error taxonomy shared by the service modules.

Services raise these; ``main`` turns them into ``{success: false, message}``
responses with the status code carried by the class.
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> Dict[str, Any]:
        return {"success": False, "code": self.code, "message": self.message}


class ValidationError(StoreError):
    status_code = 400
    code = "validation_error"


class StockInsufficiencyError(StoreError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product: str, available: int, size: Optional[str] = None):
        if size:
            message = f"Insufficient stock for {product} in size {size}. Only {available} items available."
        else:
            message = f"Insufficient stock for {product}. Only {available} items available."
        super().__init__(message)
        self.product = product
        self.size = size
        self.available = available

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body.update({"product": self.product, "size": self.size, "available": self.available})
        return body


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"


class InternalError(StoreError):
    status_code = 500
    code = "internal_error"


def describe_schema_errors(exc) -> str:
    """Flatten a pydantic ValidationError into one readable line."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"
