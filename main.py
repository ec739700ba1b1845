import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

import catalog
import config
import database
import orders
from auth import (
    authenticate,
    create_access_token,
    get_current_admin,
    get_current_user,
    register_user,
    seed_admin,
)
from database import create_document, doc_to_public, ensure_indexes, get_db
from errors import StoreError, ValidationError, describe_schema_errors
from schemas import CATEGORY_SUBCATEGORIES, CamelModel, Product as ProductSchema

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("ayosi")

# ----------------------------------------------------------------------------
# App Setup
# ----------------------------------------------------------------------------

app = FastAPI(title="Ayosi Jewellery API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


# ----------------------------------------------------------------------------
# Error Handlers
# ----------------------------------------------------------------------------

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    body = exc.to_response()
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__)
        if exc.__cause__ is not None:
            body["error"] = "Something went wrong" if config.IS_PRODUCTION else str(exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={
        "success": False,
        "code": "validation_error",
        "message": describe_schema_errors(exc),
    })


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={
        "success": False,
        "message": "Internal server error",
        "error": "Something went wrong" if config.IS_PRODUCTION else str(exc),
    })


# ----------------------------------------------------------------------------
# Utilities
# ----------------------------------------------------------------------------

async def read_payload(request: Request) -> Tuple[Dict[str, Any], Dict[str, List[UploadFile]]]:
    """
    Return (fields, files) for a JSON or form request.

    Repeated form fields (e.g. existingImages) come back as lists; empty
    file inputs are dropped.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        fields: Dict[str, Any] = {}
        files: Dict[str, List[UploadFile]] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if value.filename:
                    files.setdefault(key, []).append(value)
            elif key in fields:
                previous = fields[key]
                fields[key] = previous + [value] if isinstance(previous, list) else [previous, value]
            else:
                fields[key] = value
        return fields, files

    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON data in request")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body, {}


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=config.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="strict",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    doc = doc_to_public(user)
    return {k: doc.get(k) for k in ("id", "name", "email", "isAdmin")}


# ----------------------------------------------------------------------------
# Models (request bodies)
# ----------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class StatusUpdateRequest(CamelModel):
    status: Optional[str] = None
    courier_company: Optional[str] = None
    shipment_description: Optional[str] = None
    estimated_delivery: Optional[str] = None


class PaymentStatusUpdateRequest(CamelModel):
    payment_status: Optional[str] = None


# ----------------------------------------------------------------------------
# Auth Endpoints
# ----------------------------------------------------------------------------

@app.post("/api/users/register", status_code=201)
def register(body: RegisterRequest, db=Depends(get_db)):
    user_id = register_user(db, body.name, body.email, body.password)
    return {"success": True, "id": user_id, "message": "User registered successfully"}


@app.post("/api/users/login")
def login(body: LoginRequest, response: Response, db=Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    token = create_access_token({"sub": str(user["_id"])})
    set_auth_cookie(response, token)
    return {"success": True, "user": public_user(user), "token": token, "message": "Login successful"}


@app.post("/api/users/logout")
def logout(response: Response):
    response.delete_cookie(config.AUTH_COOKIE_NAME)
    return {"success": True, "message": "Logged out successfully"}


@app.post("/api/users/refresh")
def refresh_token(response: Response, current=Depends(get_current_user)):
    token = create_access_token({"sub": str(current["_id"])})
    set_auth_cookie(response, token)
    return {"success": True, "token": token}


@app.get("/api/users/me")
def me(current=Depends(get_current_user)):
    return {"success": True, "user": public_user(current)}


# ----------------------------------------------------------------------------
# Product Endpoints
# ----------------------------------------------------------------------------

@app.get("/api/products")
def list_products(category: Optional[str] = Query(None), db=Depends(get_db)):
    return catalog.list_products(db, category=category)


@app.get("/api/products/featured")
def featured_products(db=Depends(get_db)):
    return catalog.list_products(db, featured=True)


@app.get("/api/products/categories")
def product_categories():
    return CATEGORY_SUBCATEGORIES


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return catalog.get_product(db, product_id)


# ----------------------------------------------------------------------------
# Admin: Product Management
# ----------------------------------------------------------------------------

@app.post("/api/products", status_code=201)
async def create_product(request: Request, user=Depends(get_current_admin), db=Depends(get_db)):
    fields, files = await read_payload(request)
    product = await run_in_threadpool(catalog.create_product, db, fields, files.get("images", []))
    return {"success": True, "product": product, "message": "Product created successfully"}


@app.put("/api/products/{product_id}")
async def update_product(product_id: str, request: Request, user=Depends(get_current_admin), db=Depends(get_db)):
    fields, files = await read_payload(request)
    product = await run_in_threadpool(catalog.update_product, db, product_id, fields, files.get("images", []))
    return {"success": True, "product": product, "message": "Product updated successfully"}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_admin), db=Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"success": True, "message": "Product and images deleted successfully"}


# ----------------------------------------------------------------------------
# Orders (Checkout & Tracking)
# ----------------------------------------------------------------------------

@app.post("/api/orders", status_code=201)
async def create_order(request: Request, db=Depends(get_db)):
    fields, files = await read_payload(request)
    proofs = files.get("transactionProof") or []
    order = await run_in_threadpool(orders.create_order, db, fields, proofs[0] if proofs else None)
    return {
        "success": True,
        "order": order,
        "trackingNumber": order["trackingNumber"],
        "message": "Order placed successfully",
    }


@app.get("/api/orders/track/{tracking_number}")
def track_order(tracking_number: str, db=Depends(get_db)):
    return {"success": True, "order": orders.get_order_by_tracking_number(db, tracking_number)}


@app.get("/api/orders")
def admin_orders(user=Depends(get_current_admin), db=Depends(get_db)):
    return {"success": True, "orders": orders.get_all_orders(db)}


@app.get("/api/orders/{order_id}")
def admin_get_order(order_id: str, user=Depends(get_current_admin), db=Depends(get_db)):
    return {"success": True, "order": orders.get_order(db, order_id)}


@app.put("/api/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: StatusUpdateRequest,
                              user=Depends(get_current_admin), db=Depends(get_db)):
    order = orders.update_order_status(
        db,
        order_id,
        body.status,
        courier_company=body.courier_company,
        shipment_description=body.shipment_description,
        estimated_delivery=body.estimated_delivery,
    )
    return {"success": True, "order": order, "message": "Order status updated successfully"}


@app.put("/api/orders/{order_id}/payment-status")
def admin_update_payment_status(order_id: str, body: PaymentStatusUpdateRequest,
                                user=Depends(get_current_admin), db=Depends(get_db)):
    order = orders.update_payment_status(db, order_id, body.payment_status)
    return {"success": True, "order": order, "message": "Payment status updated successfully"}


# ----------------------------------------------------------------------------
# Health and Test
# ----------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Ayosi Jewellery API running"}


@app.get("/health")
def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "Connected" if database.db is not None else "Not configured",
    }


@app.get("/test")
def test_database():
    if database.db is None:
        return {"backend": "ok", "db": "not configured"}
    try:
        collections = database.db.list_collection_names()
        return {"backend": "ok", "db": "ok", "collections": collections}
    except PyMongoError as e:
        return {"backend": "ok", "db": f"error: {e}"}


# ----------------------------------------------------------------------------
# Seed Data (idempotent) and Startup Hook
# ----------------------------------------------------------------------------

SAMPLE_PRODUCTS = [
    {
        "title": "Golden Leaf Ring",
        "description": "Delicate gold-plated band with a hand-finished leaf motif.",
        "price": 1850,
        "category": "Rings",
        "subcategory": "Golden",
        "isAdjustable": False,
        "sizedStock": {"small": 4, "medium": 6, "large": 3},
        "images": [
            "https://images.unsplash.com/photo-1605100804763-247f67b3557e?q=80&w=1200&auto=format&fit=crop",
        ],
        "isFeatured": True,
        "tags": ["ring", "gold", "leaf"],
    },
    {
        "title": "Open Silver Ring",
        "description": "Adjustable sterling-finish ring that fits most sizes.",
        "price": 1200,
        "category": "Rings",
        "subcategory": "Silver",
        "isAdjustable": True,
        "quantity": 15,
        "images": [
            "https://images.unsplash.com/photo-1603561591411-07134e71a2a9?q=80&w=1200&auto=format&fit=crop",
        ],
        "tags": ["ring", "silver", "adjustable"],
    },
    {
        "title": "Pearl Drop Necklace",
        "description": "Freshwater pearl pendant on a fine golden chain.",
        "price": 3200,
        "category": "Necklaces",
        "subcategory": "Golden",
        "quantity": 10,
        "images": [
            "https://images.unsplash.com/photo-1599643478518-a784e5dc4c8f?q=80&w=1200&auto=format&fit=crop",
        ],
        "isFeatured": True,
        "tags": ["necklace", "pearl"],
    },
    {
        "title": "Classic Jhumkay",
        "description": "Traditional bell earrings with antique silver finish.",
        "price": 2100,
        "category": "Earrings",
        "subcategory": "Jhumkay",
        "quantity": 12,
        "images": [
            "https://images.unsplash.com/photo-1635767798638-3e25273a8236?q=80&w=1200&auto=format&fit=crop",
        ],
        "tags": ["earrings", "jhumka"],
    },
]


def seed_data(db):
    seed_admin(db)

    if config.SEED_SAMPLE_PRODUCTS and db["product"].count_documents({}) == 0:
        for p in SAMPLE_PRODUCTS:
            create_document(db, "product", ProductSchema.model_validate(p))
        logger.info("Seeded %d sample products", len(SAMPLE_PRODUCTS))


@app.post("/api/admin/seed")
def trigger_seed(user=Depends(get_current_admin), db=Depends(get_db)):
    seed_data(db)
    return {"seeded": True}


@app.on_event("startup")
def on_startup():
    if database.db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        return
    try:
        ensure_indexes(database.db)
        seed_data(database.db)
    except PyMongoError:
        logger.exception("Startup seeding failed")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
