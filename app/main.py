import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import auth, cart, orders, products, sales
from app.core.config import APP_NAME, CORS_ORIGINS, LOG_LEVEL
from app.core.errors import (
    CartStockError,
    ConflictError,
    InsufficientStockError,
    InvalidInputError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ShopError,
    UnavailableProductsError,
)
from app.db.mongo import ensure_indexes
from app.models.schemas import describe_validation_errors

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger("API")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.error(f"Could not ensure indexes at startup: {e}")
    yield


app = FastAPI(title=APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(products.router, prefix="/api/products", tags=["products"])
app.include_router(cart.router, prefix="/api/cart", tags=["cart"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(sales.router, prefix="/api/sales", tags=["sales"])


ERROR_STATUS_CODES = {
    InvalidInputError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    InsufficientStockError: 409,
    InvalidTransitionError: 409,
    NotAuthorizedError: 403,
    UnavailableProductsError: 400,
    CartStockError: 400,
}


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Map ShopError subclasses to the error envelope."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": exc.message, "error_type": type(exc).__name__, **exc.details},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message, field = describe_validation_errors(exc.errors())
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "field": field},
    )


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Database unavailable, please retry", "retryable": True},
    )


@app.get("/")
def root():
    return {"status": "ok", "app": APP_NAME}
