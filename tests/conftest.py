from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import main
import media
from database import create_document, ensure_indexes, get_db
from schemas import Product


@pytest.fixture
def db():
    database = mongomock.MongoClient()["ayosi_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def media_store(monkeypatch):
    """Stands in for Cloudinary and records what was uploaded and deleted."""
    store = SimpleNamespace(uploaded=[], deleted=[])

    def fake_upload(upload, folder, max_side=800):
        name = upload.filename.rsplit(".", 1)[0]
        url = f"https://res.cloudinary.com/demo/image/upload/v1700000000/{folder}/{name}.jpg"
        store.uploaded.append(url)
        return {"url": url, "public_id": f"{folder}/{name}"}

    def fake_delete(public_id):
        store.deleted.append(public_id)
        return {"result": "ok"}

    monkeypatch.setattr(media, "upload_image", fake_upload)
    monkeypatch.setattr(media, "delete_image", fake_delete)
    return store


@pytest.fixture
def client(db, media_store):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(db):
    user_id = auth.register_user(db, "Admin", "admin@ayosi.pk", "secret123", is_admin=True)
    token = auth.create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def add_product(db):
    def _add(**overrides):
        data = {
            "title": "Pearl Drop Necklace",
            "description": "Freshwater pearl pendant",
            "price": 3200,
            "category": "Necklaces",
            "quantity": 10,
            "images": ["https://res.cloudinary.com/demo/image/upload/v1/ayosi-products/pearl.jpg"],
        }
        data.update(overrides)
        return create_document(db, "product", Product.model_validate(data))
    return _add


@pytest.fixture
def sized_ring(add_product):
    return add_product(
        title="Golden Leaf Ring",
        category="Rings",
        price=1850,
        quantity=None,
        sized_stock={"small": 2, "medium": 0, "large": 5},
        images=["https://res.cloudinary.com/demo/image/upload/v1/ayosi-products/leaf.jpg"],
    )


@pytest.fixture
def checkout_payload():
    def _payload(items, **overrides):
        payload = {
            "customerName": "Sana Malik",
            "email": "sana.malik@gmail.com",
            "phone": "03001234567",
            "shippingAddress": "12 Canal View",
            "city": "Lahore",
            "province": "punjab",
            "country": "Pakistan",
            "orderItems": items,
            "subtotal": 3200,
            "shippingCost": 250,
            "totalAmount": 3450,
            "paymentMethod": "cod",
        }
        payload.update(overrides)
        return payload
    return _payload
