"""
Plateful Checkout - Centralized Configuration
==============================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
import sys
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME")

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)
    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 🔐 Security
# ==========================================
SECRET_KEY = os.getenv("SECRET_KEY")

if not SECRET_KEY:
    print("[ERROR] Critical: Security key missing in .env (SECRET_KEY)")
    sys.exit(1)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 1 day

# Redirect origins accepted for successUrl / cancelUrl
ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:3001",
    ).split(",") if o.strip()
]


# ==========================================
# 💳 Payment Processor
# ==========================================
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "sandbox")  # "stripe" | "sandbox"
PAYMENT_CURRENCY = "usd"
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS") or "15")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_URL = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")
STRIPE_WEBHOOK_TOLERANCE_SECONDS = 300

SANDBOX_CHECKOUT_URL = os.getenv("SANDBOX_CHECKOUT_URL", "http://localhost:8000/sandbox/pay")
SANDBOX_WEBHOOK_SECRET = os.getenv("SANDBOX_WEBHOOK_SECRET", "whsec_sandbox")


# ==========================================
# 🧾 Pricing & Checkout Limits
# ==========================================
TAX_RATE = float(os.getenv("TAX_RATE") or "0.0875")  # 8.75%, per jurisdiction

MAX_ITEMS = 100                   # max cart lines per checkout
MAX_QUANTITY = 100                # max quantity per line
MIN_AMOUNT_CENTS = 500            # $5.00
MAX_AMOUNT_CENTS = 100_000_000    # $1,000,000.00
SESSION_EXPIRES_MINUTES = 30

# Max combined discount as fraction of subtotal
MAX_DISCOUNT_FRACTION = float(os.getenv("MAX_DISCOUNT_FRACTION") or "0.50")

# Tolerance (cents) before a client-side total is logged as a mismatch
FRONTEND_TOTAL_TOLERANCE_CENTS = 10


# ==========================================
# 🚦 Rate Limiting (per user, persisted)
# ==========================================
MAX_ATTEMPTS_PER_WINDOW = 10
WINDOW_MINUTES = 5
BLOCK_MINUTES = 15

SESSION_LOOKUP_MAX_ATTEMPTS = 20
SESSION_LOOKUP_BLOCK_MINUTES = 10


# ==========================================
# 🧹 Cleanup
# ==========================================
PENDING_CART_RETENTION_HOURS = 24


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:8000")
