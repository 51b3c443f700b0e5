import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


APP_NAME = os.getenv("APP_NAME", "Storefront API")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "storefront")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))
# standalone servers have no multi-document transactions
MONGO_TRANSACTIONS = _flag("MONGO_TRANSACTIONS", "true")
MONGO_TRANSACTION_RETRIES = int(os.getenv("MONGO_TRANSACTION_RETRIES", "3"))

SECRET_KEY = os.getenv("SECRET_KEY", "changeme")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))
COOKIE_SECURE = _flag("COOKIE_SECURE", "false")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

MAX_FEATURED_PRODUCTS = int(os.getenv("MAX_FEATURED_PRODUCTS", "10"))
