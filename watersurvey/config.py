import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./watersurvey.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Razorpay Configuration
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")

# Cloudflare R2 Configuration
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "watersurvey")
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL")  # e.g. https://files.example.com

# External collaborators
INVOICE_SERVICE_URL = os.getenv("INVOICE_SERVICE_URL")
NOTIFICATION_PUSH_URL = os.getenv("NOTIFICATION_PUSH_URL")

# Pricing defaults (overridable at runtime through platform_settings rows)
TRAVEL_CHARGE_PER_KM = float(os.getenv("TRAVEL_CHARGE_PER_KM", "10"))
BASE_RADIUS_KM = float(os.getenv("BASE_RADIUS_KM", "30"))
GST_PERCENTAGE = float(os.getenv("GST_PERCENTAGE", "18"))
ADVANCE_RATIO = float(os.getenv("ADVANCE_RATIO", "0.4"))

# Vendor payout split
PLATFORM_FEE_PERCENTAGE = float(os.getenv("PLATFORM_FEE_PERCENTAGE", "15"))
VENDOR_GST_PERCENTAGE = float(os.getenv("VENDOR_GST_PERCENTAGE", "18"))

# Wallet credit retry
WALLET_RETRY_DELAY_SECONDS = int(os.getenv("WALLET_RETRY_DELAY_SECONDS", "300"))
WALLET_CREDIT_MAX_RETRIES = int(os.getenv("WALLET_CREDIT_MAX_RETRIES", "3"))

# Notification outbox
OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "50"))
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))

# Free-text reasons (reject, cancel, travel-charge rejection)
MIN_REASON_LENGTH = 10

# Vendor withdrawals
MIN_WITHDRAWAL_AMOUNT = float(os.getenv("MIN_WITHDRAWAL_AMOUNT", "1000"))
