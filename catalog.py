"""
Catalog service: product CRUD and the stock bookkeeping orders rely on.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import pydantic

import config
import media
from database import create_document, doc_to_public, get_documents, to_object_id, utcnow
from errors import NotFoundError, ValidationError, describe_schema_errors
from schemas import SIZE_BUCKETS, Product

logger = logging.getLogger(__name__)

REQUIRED_PRODUCT_FIELDS = ("title", "description", "price", "category")


# ----------------------------------------------------------------------------
# Stock helpers
# ----------------------------------------------------------------------------

def is_sized_ring(product: Dict[str, Any]) -> bool:
    return product.get("category") == "Rings" and not product.get("isAdjustable", False)


def total_stock(product: Dict[str, Any]) -> int:
    if is_sized_ring(product):
        sized = product.get("sizedStock") or {}
        return sum(int(sized.get(b, 0) or 0) for b in ("small", "medium", "large"))
    return int(product.get("quantity") or 0)


def resolve_stock(product: Dict[str, Any], selected_size: Optional[str]) -> Tuple[Optional[str], int]:
    """
    Return (bucket, available) for a purchase of ``product``.

    Sized rings are stocked per bucket and need a recognised size; everything
    else draws from ``quantity`` and ignores the size.
    """
    if is_sized_ring(product):
        bucket = SIZE_BUCKETS.get((selected_size or "").strip())
        if bucket is None:
            sizes = ", ".join(SIZE_BUCKETS)
            raise ValidationError(f"Please select a ring size ({sizes}) for {product.get('title')}")
        sized = product.get("sizedStock") or {}
        return bucket, int(sized.get(bucket, 0) or 0)
    return None, int(product.get("quantity") or 0)


def product_to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    public = doc_to_public(doc)
    public["totalStock"] = total_stock(doc)
    return public


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------

def find_product(db, product_id: Any) -> Optional[Dict[str, Any]]:
    """Raw product document, or None for unknown and malformed ids."""
    oid = to_object_id(product_id)
    if oid is None:
        return None
    return db["product"].find_one({"_id": oid})


def get_product(db, product_id: str) -> Dict[str, Any]:
    doc = find_product(db, product_id)
    if not doc:
        raise NotFoundError("Product not found")
    return product_to_public(doc)


def list_products(db, category: Optional[str] = None, featured: Optional[bool] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if featured is not None:
        query["isFeatured"] = featured
    return [product_to_public(p) for p in get_documents(db, "product", query, sort=[("createdAt", -1)])]


# ----------------------------------------------------------------------------
# Stock mutation
# ----------------------------------------------------------------------------

def decrement_stock(db, product_id: Any, bucket: Optional[str], amount: int) -> None:
    """Take ``amount`` off a product's stock, never going below zero."""
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        logger.warning("Stock not updated: product %s no longer exists", product_id)
        return

    if bucket:
        field = f"sizedStock.{bucket}"
        current = int((product.get("sizedStock") or {}).get(bucket, 0) or 0)
    else:
        field = "quantity"
        current = int(product.get("quantity") or 0)
    new_stock = max(0, current - amount)

    db["product"].update_one({"_id": oid}, {"$set": {field: new_stock, "updatedAt": utcnow()}})
    logger.info("Stock updated for %s (%s): %d -> %d", product.get("title"), bucket or "quantity", current, new_stock)


# ----------------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------------

def _decode_json(value: Any, field: str) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError(f"Invalid JSON in {field}")
    return value


def normalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce form-encoded product fields into their structured shape."""
    data = {k: v for k, v in fields.items() if k != "existingImages"}
    for key in ("title", "description", "category", "subcategory"):
        if isinstance(data.get(key), str):
            data[key] = data[key].strip()
    if "sizedStock" in data:
        data["sizedStock"] = _decode_json(data["sizedStock"], "sizedStock")
    if isinstance(data.get("tags"), str):
        raw = data["tags"].strip()
        if raw.startswith("["):
            data["tags"] = _decode_json(raw, "tags")
        else:
            data["tags"] = [t.strip() for t in raw.split(",") if t.strip()]
    if data.get("quantity") == "":
        data.pop("quantity")
    return data


def _validate_product(data: Dict[str, Any]) -> Product:
    try:
        return Product.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(describe_schema_errors(exc))


def _check_uploads(files: List[Any]) -> None:
    if len(files) > config.MAX_PRODUCT_IMAGES:
        raise ValidationError(f"At most {config.MAX_PRODUCT_IMAGES} images can be uploaded at once")
    for f in files:
        media.validate_image(f)


def _upload_all(files: List[Any], uploaded: List[str]) -> None:
    for f in files:
        uploaded.append(media.upload_image(f, config.PRODUCT_IMAGE_FOLDER)["url"])


def create_product(db, fields: Dict[str, Any], files: List[Any]) -> Dict[str, Any]:
    data = normalize_fields(fields)
    missing = [k for k in REQUIRED_PRODUCT_FIELDS if data.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if not files:
        raise ValidationError("At least one image is required")
    _check_uploads(files)

    # validate before anything reaches the media store
    product = _validate_product({**data, "images": [f.filename or "upload" for f in files]})

    uploaded: List[str] = []
    try:
        _upload_all(files, uploaded)
        product.images = uploaded
        product_id = create_document(db, "product", product)
    except Exception:
        logger.error("Product creation failed, cleaning up %d uploaded images", len(uploaded))
        media.delete_images_quietly(uploaded)
        raise

    logger.info("Product created: %s", product_id)
    return product_to_public(find_product(db, product_id))


def update_product(db, product_id: str, fields: Dict[str, Any], files: List[Any]) -> Dict[str, Any]:
    existing = find_product(db, product_id)
    if not existing:
        raise NotFoundError("Product not found")

    data = normalize_fields(fields)
    _check_uploads(files)

    old_images = list(existing.get("images") or [])
    kept = fields.get("existingImages")
    if kept is None:
        new_images: List[str] = []
    elif isinstance(kept, str):
        new_images = [kept]
    else:
        new_images = list(kept)

    uploaded: List[str] = []
    try:
        _upload_all(files, uploaded)
        new_images.extend(uploaded)
        merged = {**existing, **data}
        if new_images:
            merged["images"] = new_images
        product = _validate_product(merged)
        update = product.model_dump(by_alias=True)
        update["updatedAt"] = utcnow()
        db["product"].update_one({"_id": existing["_id"]}, {"$set": update})
    except Exception:
        media.delete_images_quietly(uploaded)
        raise

    if new_images:
        media.delete_images_quietly([img for img in old_images if img not in new_images])

    logger.info("Product updated: %s", product_id)
    return product_to_public(find_product(db, product_id))


def delete_product(db, product_id: str) -> None:
    existing = find_product(db, product_id)
    if not existing:
        raise NotFoundError("Product not found")
    media.delete_images_quietly(existing.get("images") or [])
    db["product"].delete_one({"_id": existing["_id"]})
    logger.info("Product deleted: %s", product_id)
