"""
Order service

Checkout (stock check, order write, stock decrement), public tracking and
the admin status / payment-status flows.

Stock is checked against a point-in-time read and decremented after the
order is written, with no lock in between: two concurrent checkouts for
the last unit can both succeed. Decrements are best-effort and never undo
an order that has already been stored.
"""

import json
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pydantic
from pymongo.errors import DuplicateKeyError, PyMongoError

import catalog
import config
import media
from database import create_document, doc_to_public, to_object_id, utcnow
from errors import (
    InternalError,
    NotFoundError,
    StockInsufficiencyError,
    ValidationError,
    describe_schema_errors,
)
from schemas import (
    ORDER_STATUSES,
    PAYMENT_STATUSES,
    CamelModel,
    Order,
    OrderItem,
    StatusHistoryEntry,
)

logger = logging.getLogger(__name__)

REQUIRED_ORDER_FIELDS = (
    "customerName",
    "email",
    "phone",
    "shippingAddress",
    "city",
    "province",
    "country",
    "orderItems",
    "subtotal",
    "totalAmount",
    "paymentMethod",
)

# Only present on bank transfers
BANK_TRANSFER_FIELDS = ("selectedAccount", "paymentDetails", "transactionProof")

# Used only when STRICT_STATUS_TRANSITIONS is on; by default any status may follow any other.
STATUS_TRANSITIONS = {
    "Received": {"Received", "Processing", "Shipping", "Delivered"},
    "Processing": {"Processing", "Shipping", "Delivered"},
    "Shipping": {"Shipping", "Delivered"},
    "Delivered": {"Delivered"},
}

TRACKING_ALPHABET = string.ascii_uppercase + string.digits
MAX_TRACKING_ATTEMPTS = 5


class LineItemRequest(CamelModel):
    """One requested line item. title/price/image are only used when the product can't be found."""
    product: Optional[Any] = None
    quantity: int = pydantic.Field(..., ge=1)
    selected_size: Optional[str] = None
    title: Optional[str] = None
    price: Optional[float] = pydantic.Field(None, ge=0)
    image: Optional[str] = None


def generate_tracking_number(prefix: Optional[str] = None) -> str:
    stamp = str(int(time.time() * 1000))[-8:]
    suffix = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(4))
    return f"{prefix or config.TRACKING_PREFIX}-{stamp}-{suffix}"


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _validate(model, data: Any):
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(describe_schema_errors(exc))


def _parse_json_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    parsed = dict(data)
    for key in ("orderItems", "paymentDetails"):
        value = parsed.get(key)
        if isinstance(value, str) and value.strip():
            try:
                parsed[key] = json.loads(value)
            except json.JSONDecodeError:
                raise ValidationError("Invalid JSON data in request")
    return parsed


# ----------------------------------------------------------------------------
# Checkout
# ----------------------------------------------------------------------------

def _resolve_items(db, raw_items: List[Any]) -> Tuple[List[OrderItem], List[Tuple[Any, Optional[str], int]]]:
    """
    Snapshot every line item and collect the stock decrements to apply.

    Raises before anything is written if any live product is short on stock.
    """
    items: List[OrderItem] = []
    decrements: List[Tuple[Any, Optional[str], int]] = []

    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Each order item must be an object")
        req = _validate(LineItemRequest, raw)
        product = catalog.find_product(db, req.product) if req.product is not None else None

        if product:
            bucket, available = catalog.resolve_stock(product, req.selected_size)
            if req.quantity > available:
                raise StockInsufficiencyError(product.get("title"), available, req.selected_size if bucket else None)
            images = product.get("images") or []
            items.append(OrderItem(
                product=str(product["_id"]),
                title=product.get("title"),
                price=product.get("price", 0),
                quantity=req.quantity,
                image=images[0] if images else "",
                selected_size=req.selected_size,
            ))
            decrements.append((product["_id"], bucket, req.quantity))
        else:
            # deleted or never-catalogued product: keep the client's snapshot, no stock to check
            items.append(OrderItem(
                product=None,
                title=req.title or f"Product {req.product}",
                price=req.price or 0,
                quantity=req.quantity,
                image=req.image or "",
                selected_size=req.selected_size,
            ))

    return items, decrements


def _order_document(order: Order) -> Dict[str, Any]:
    doc = order.model_dump(by_alias=True)
    for key in BANK_TRANSFER_FIELDS:
        if doc.get(key) is None:
            doc.pop(key, None)
    return doc


def _insert_order(db, order: Order) -> str:
    for attempt in range(1, MAX_TRACKING_ATTEMPTS + 1):
        try:
            return create_document(db, "order", _order_document(order))
        except DuplicateKeyError:
            if attempt == MAX_TRACKING_ATTEMPTS:
                raise
            logger.warning("Tracking number %s already taken, regenerating", order.tracking_number)
            order.tracking_number = generate_tracking_number()


def create_order(db, data: Dict[str, Any], proof=None) -> Dict[str, Any]:
    """
    Place an order.

    ``data`` is the checkout payload as sent by the storefront (camelCase
    keys; ``orderItems`` and ``paymentDetails`` may arrive JSON encoded when
    the request is multipart). ``proof`` is the optional payment screenshot
    for bank transfers.
    """
    data = _parse_json_fields(data)

    missing = [f for f in REQUIRED_ORDER_FIELDS if _is_blank(data.get(f))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    bank_transfer = data["paymentMethod"] == "bank_transfer"
    if bank_transfer:
        if _is_blank(data.get("selectedAccount")):
            raise ValidationError("Selected account is required for bank transfer")
        if _is_blank(data.get("paymentDetails")):
            raise ValidationError("Payment details are required for bank transfer")
        if proof is not None:
            media.validate_image(proof)

    if not isinstance(data["orderItems"], list):
        raise ValidationError("orderItems must be a list")

    items, decrements = _resolve_items(db, data["orderItems"])

    now = utcnow()
    order = _validate(Order, {
        "trackingNumber": generate_tracking_number(),
        "customerName": data["customerName"],
        "email": data["email"],
        "phone": data["phone"],
        "shippingAddress": data["shippingAddress"],
        "city": data["city"],
        "province": data["province"],
        "country": data["country"],
        "orderItems": items,
        "subtotal": data["subtotal"],
        "shippingCost": 0 if _is_blank(data.get("shippingCost")) else data["shippingCost"],
        "totalAmount": data["totalAmount"],
        "paymentMethod": data["paymentMethod"],
        "selectedAccount": data.get("selectedAccount") if bank_transfer else None,
        "paymentDetails": data.get("paymentDetails") if bank_transfer else None,
        "paymentStatus": "pending" if bank_transfer else "verified",
        "status": "Received",
        "statusHistory": [
            StatusHistoryEntry(status="Received", description="Order placed successfully",
                               courier_company="", timestamp=now),
        ],
    })

    proof_url = None
    if bank_transfer and proof is not None:
        proof_url = media.upload_image(proof, config.TRANSACTION_PROOF_FOLDER, max_side=1000)["url"]
        order.transaction_proof = proof_url

    try:
        order_id = _insert_order(db, order)
    except PyMongoError as exc:
        logger.exception("Order creation failed for %s", order.email)
        if proof_url:
            media.delete_images_quietly([proof_url])
        raise InternalError("Failed to create order") from exc

    logger.info("Order %s placed (%d items, %s)", order.tracking_number, len(items), order.payment_method)

    for product_id, bucket, quantity in decrements:
        try:
            catalog.decrement_stock(db, product_id, bucket, quantity)
        except Exception:
            logger.exception("Error updating stock for product %s", product_id)

    return doc_to_public(db["order"].find_one({"_id": to_object_id(order_id)}))


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------

def _populate(db, order_docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace each line item's product id with the live product, or None if it is gone."""
    ids = {
        to_object_id(item.get("product"))
        for o in order_docs
        for item in o.get("orderItems") or []
        if item.get("product")
    }
    ids.discard(None)
    products = {}
    if ids:
        for p in db["product"].find({"_id": {"$in": list(ids)}}):
            products[str(p["_id"])] = catalog.product_to_public(p)

    result = []
    for o in order_docs:
        public = doc_to_public(o)
        for item in public.get("orderItems") or []:
            if item.get("product"):
                item["product"] = products.get(item["product"])
        result.append(public)
    return result


def _find_order(db, order_id: str) -> Dict[str, Any]:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_by_tracking_number(db, tracking_number: str) -> Dict[str, Any]:
    order = db["order"].find_one({"trackingNumber": tracking_number})
    if not order:
        raise NotFoundError("Order not found with this tracking number")
    return _populate(db, [order])[0]


def get_all_orders(db) -> List[Dict[str, Any]]:
    cursor = db["order"].find({}).sort([("createdAt", -1), ("_id", -1)])
    return _populate(db, list(cursor))


def get_order(db, order_id: str) -> Dict[str, Any]:
    return _populate(db, [_find_order(db, order_id)])[0]


# ----------------------------------------------------------------------------
# Admin updates
# ----------------------------------------------------------------------------

def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("estimatedDelivery must be an ISO date")


def update_order_status(db, order_id: str, status: Optional[str], courier_company: Optional[str] = None,
                        shipment_description: Optional[str] = None, estimated_delivery: Any = None) -> Dict[str, Any]:
    if not status:
        raise ValidationError("Status is required")
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    estimated = None if _is_blank(estimated_delivery) else _parse_datetime(estimated_delivery)

    order = _find_order(db, order_id)
    current = order.get("status", "Received")
    if config.STRICT_STATUS_TRANSITIONS and status not in STATUS_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot move order from {current} to {status}")

    courier = courier_company if courier_company is not None else order.get("courierCompany", "")
    description = shipment_description if shipment_description is not None else order.get("shipmentDescription", "")
    now = utcnow()

    update: Dict[str, Any] = {
        "status": status,
        "courierCompany": courier,
        "shipmentDescription": description,
        "updatedAt": now,
    }
    if estimated is not None:
        update["estimatedDelivery"] = estimated
    if status == "Delivered":
        update["actualDelivery"] = now

    entry = StatusHistoryEntry(status=status, description=description, courier_company=courier, timestamp=now)
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": update, "$push": {"statusHistory": entry.model_dump(by_alias=True)}},
    )
    logger.info("Order %s status %s -> %s", order.get("trackingNumber"), current, status)
    return get_order(db, str(order["_id"]))


def update_payment_status(db, order_id: str, payment_status: Optional[str]) -> Dict[str, Any]:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError("Valid payment status is required (pending, verified, rejected)")
    order = _find_order(db, order_id)
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"paymentStatus": payment_status, "updatedAt": utcnow()}},
    )
    logger.info("Order %s payment %s -> %s", order.get("trackingNumber"), order.get("paymentStatus"), payment_status)
    return get_order(db, str(order["_id"]))
