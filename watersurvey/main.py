import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
# This is needed for relationships between models in different files
from . import (
    models,  # noqa: F401
    models_booking,  # noqa: F401
    models_notification,  # noqa: F401
    models_payment,  # noqa: F401
    models_rating,  # noqa: F401
    models_wallet,  # noqa: F401
)
from .database import Base, engine
from .domain.bookings.router import admin_router as admin_bookings_router
from .domain.bookings.router import router as bookings_router
from .domain.bookings.router import vendor_router as vendor_bookings_router
from .domain.payments.router import router as payments_router
from .domain.ratings.router import router as ratings_router
from .domain.wallet.router import admin_router as admin_wallet_router
from .domain.wallet.router import router as wallet_router
from .domain.wallet.service import WalletRetryError
from .exceptions import (
    BookingAccessError,
    BookingNotFoundError,
    InvalidActionError,
    PaymentGatewayError,
    PaymentVerificationError,
    TransitionError,
    WithdrawalNotFoundError,
)
from .routes.notifications import router as notifications_router
from .routes.vendors import router as vendors_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Water Survey API", version="1.0.0", lifespan=lifespan)


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(TransitionError)
async def transition_error_handler(request: Request, exc: TransitionError):
    logger.info(f"⚠️ Rejected {exc.action} on {request.url.path}: current {exc.current}")
    return _failure(
        409,
        exc.message,
        currentStatus=exc.current,
        expectedStatus=list(exc.expected),
    )


@app.exception_handler(BookingNotFoundError)
async def not_found_handler(request: Request, exc: BookingNotFoundError):
    return _failure(404, exc.message)


@app.exception_handler(WithdrawalNotFoundError)
async def withdrawal_not_found_handler(request: Request, exc: WithdrawalNotFoundError):
    return _failure(404, exc.message)


@app.exception_handler(BookingAccessError)
async def access_error_handler(request: Request, exc: BookingAccessError):
    logger.warning(f"⚠️ Forbidden booking access on {request.url.path}")
    return _failure(403, exc.message)


@app.exception_handler(InvalidActionError)
async def invalid_action_handler(request: Request, exc: InvalidActionError):
    return _failure(400, exc.message)


@app.exception_handler(PaymentVerificationError)
async def payment_verification_handler(request: Request, exc: PaymentVerificationError):
    logger.warning(f"❌ Payment verification failed on {request.url.path}: {exc.message}")
    return _failure(400, exc.message)


@app.exception_handler(PaymentGatewayError)
async def payment_gateway_handler(request: Request, exc: PaymentGatewayError):
    logger.error(f"❌ Payment gateway error on {request.url.path}: {exc.message}")
    return _failure(502, exc.message)


@app.exception_handler(WalletRetryError)
async def wallet_retry_handler(request: Request, exc: WalletRetryError):
    return _failure(400, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return _failure(401, "Not authenticated. Please provide a valid Bearer token.")

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return _failure(422, "Validation failed", errors=errors)


ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(bookings_router)
app.include_router(vendor_bookings_router)
app.include_router(admin_bookings_router)
app.include_router(payments_router)
app.include_router(ratings_router)
app.include_router(wallet_router)
app.include_router(admin_wallet_router)
app.include_router(notifications_router)
app.include_router(vendors_router)


@app.get("/")
def root():
    return {"message": "Water Survey API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
