import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "180"))
AUTH_COOKIE_NAME = "token"

ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
SEED_SAMPLE_PRODUCTS = _flag("SEED_SAMPLE_PRODUCTS")

# Orders
TRACKING_PREFIX = os.getenv("TRACKING_PREFIX", "AYOSI")
STRICT_STATUS_TRANSITIONS = _flag("STRICT_STATUS_TRANSITIONS")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:8080,http://localhost:3000",
    ).split(",")
    if o.strip()
]

# Media store
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
PRODUCT_IMAGE_FOLDER = "ayosi-products"
TRANSACTION_PROOF_FOLDER = "ayosi-transaction-proofs"
MAX_UPLOAD_BYTES = 5 * 1024 * 1024
MAX_PRODUCT_IMAGES = 5
