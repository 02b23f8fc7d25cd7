"""
RMShop - Centralized Configuration
===================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
import sys
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DATABASE_URL = os.getenv("DATABASE_URL", "")

if not DATABASE_URL:
    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME")

    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 💳 Payment Gateway
# ==========================================
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "sandbox")   # razorpay / sandbox
GATEWAY_KEY_ID = os.getenv("GATEWAY_KEY_ID", "")
GATEWAY_KEY_SECRET = os.getenv("GATEWAY_KEY_SECRET", "")    # shared HMAC secret for callbacks
GATEWAY_CURRENCY = os.getenv("GATEWAY_CURRENCY", "INR")
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT") or "15")

if PAYMENT_GATEWAY != "sandbox" and not all([GATEWAY_KEY_ID, GATEWAY_KEY_SECRET]):
    print("[ERROR] Critical: Gateway keys missing in .env (GATEWAY_KEY_ID, GATEWAY_KEY_SECRET)")
    sys.exit(1)


# ==========================================
# 📧 Notifications (email / SMS relay)
# ==========================================
NOTIFY_API_URL = os.getenv("NOTIFY_API_URL", "")
NOTIFY_API_KEY = os.getenv("NOTIFY_API_KEY", "")


# ==========================================
# 🛒 Cart & Checkout rules
# ==========================================
MAX_CART_ITEM_QUANTITY = 10
MAX_CART_LINES = int(os.getenv("MAX_CART_LINES") or "20")

CURRENCY_PRECISION = Decimal("0.01")
COD_LIMIT = Decimal(os.getenv("COD_LIMIT") or "1000.00")          # cash on delivery ceiling
COUPON_MAX_DISCOUNT = Decimal(os.getenv("COUPON_MAX_DISCOUNT") or "5000.00")


# ==========================================
# 📦 Order lifecycle windows
# ==========================================
CANCELLATION_WINDOW_HOURS = int(os.getenv("CANCELLATION_WINDOW_HOURS") or "24")
RETURN_WINDOW_DAYS = int(os.getenv("RETURN_WINDOW_DAYS") or "14")
MAX_RETURN_REASON_LENGTH = 500


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
