# promo_engine/config.py
import os

from dotenv import load_dotenv

load_dotenv()

ENV = os.getenv("ENV", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./promo_engine.db")

# ----- Auth -----
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
ADMIN_EMAILS = {x.strip().lower() for x in os.getenv("ADMIN_EMAILS", "").split(",") if x.strip()}

# ----- Stripe coupon mirror (optional) -----
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd").lower()

# ----- Redemption commit policy -----
REDEEM_MAX_ATTEMPTS = int(os.getenv("REDEEM_MAX_ATTEMPTS", "5"))
REDEEM_BACKOFF_BASE_MS = int(os.getenv("REDEEM_BACKOFF_BASE_MS", "25"))
REDEEM_BACKOFF_MAX_MS = int(os.getenv("REDEEM_BACKOFF_MAX_MS", "800"))
REDEEM_LOCK_TIMEOUT_MS = int(os.getenv("REDEEM_LOCK_TIMEOUT_MS", "2000"))
REDEEM_COMMIT_TIMEOUT_MS = int(os.getenv("REDEEM_COMMIT_TIMEOUT_MS", "10000"))

STATS_TOP_N = int(os.getenv("STATS_TOP_N", "10"))
