"""
Homestay Booking - Centralized Configuration
=============================================
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
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


# ==========================================
# 💳 Payment Gateways
# ==========================================
# VNPay (redirect + HMAC-SHA512)
VNPAY_URL = os.getenv("VNPAY_URL", "")
VNPAY_TMN_CODE = os.getenv("VNPAY_TMN_CODE", "")
VNPAY_HASH_SECRET = os.getenv("VNPAY_HASH_SECRET", "")
VNPAY_VERSION = os.getenv("VNPAY_VERSION", "2.1.0")
VNPAY_COMMAND = os.getenv("VNPAY_COMMAND", "pay")
VNPAY_CURR_CODE = os.getenv("VNPAY_CURR_CODE", "VND")
VNPAY_LOCALE = os.getenv("VNPAY_LOCALE", "vn")

# Momo (JSON API + HMAC-SHA256)
MOMO_URL = os.getenv("MOMO_URL", "")
MOMO_REFUND_URL = os.getenv("MOMO_REFUND_URL", "")
MOMO_QUERY_URL = os.getenv("MOMO_QUERY_URL", "")
MOMO_PARTNER_CODE = os.getenv("MOMO_PARTNER_CODE", "")
MOMO_ACCESS_KEY = os.getenv("MOMO_ACCESS_KEY", "")
MOMO_SECRET_KEY = os.getenv("MOMO_SECRET_KEY", "")
MOMO_IPN_URL = os.getenv("MOMO_IPN_URL", "")

GATEWAY_TIMEOUT_SECONDS = int(os.getenv("GATEWAY_TIMEOUT_SECONDS") or "15")

# Pending online payments older than this are marked failed
PAYMENT_EXPIRE_MINUTES = int(os.getenv("PAYMENT_EXPIRE_MINUTES") or "15")


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Browser app that receives the user after a gateway return
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://127.0.0.1:5173")
