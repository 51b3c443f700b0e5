import logging

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.server_api import ServerApi

from app.core import config

logger = logging.getLogger("DB")

PRODUCTS = "products"
ORDERS = "orders"
USERS = "users"

client = None


def get_client():
    global client
    if client is None:
        if not config.MONGO_URI:
            raise RuntimeError("MONGO_URI not configured. See .env")
        client = MongoClient(
            config.MONGO_URI,
            server_api=ServerApi("1"),
            serverSelectionTimeoutMS=config.MONGO_TIMEOUT_MS,
            connectTimeoutMS=config.MONGO_TIMEOUT_MS,
            socketTimeoutMS=config.MONGO_TIMEOUT_MS,
            retryWrites=True,
        )
    return client


def get_db():
    return get_client()[config.MONGO_DB_NAME]


def ensure_indexes(db=None):
    db = db if db is not None else get_db()
    db[ORDERS].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
    db[ORDERS].create_index([("status", ASCENDING), ("createdAt", ASCENDING)])
    db[ORDERS].create_index("paymentStatus")
    db[ORDERS].create_index("trackingNumber")
    db[ORDERS].create_index("shippingAddress.email")
    db[USERS].create_index("email", unique=True)
    db[PRODUCTS].create_index([("featured", ASCENDING), ("createdAt", DESCENDING)])
    logger.info(f"Indexes ensured on {db.name}")
