import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "veritygem")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
RESET_CODE_TTL_MINUTES = int(os.getenv("RESET_CODE_TTL_MINUTES", 15))
COOKIE_SECURE = os.getenv("ENVIRONMENT", "development") == "production"

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")

# Checkout
SHIPPING_COST = float(os.getenv("SHIPPING_COST", 50))
TAX_RATE = float(os.getenv("TAX_RATE", 0.10))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")
# When false, an order fails as soon as one requested line no longer resolves
ALLOW_PARTIAL_ORDERS = os.getenv("ALLOW_PARTIAL_ORDERS", "true").lower() in ("1", "true", "yes")

# Gift cards
GIFT_CARD_VALID_DAYS = int(os.getenv("GIFT_CARD_VALID_DAYS", 365))

# Currency rates
CURRENCY_API_URL = os.getenv("CURRENCY_API_URL", "https://api.exchangerate-api.com/v4/latest")
CURRENCY_TIMEOUT = float(os.getenv("CURRENCY_TIMEOUT", 5))

# Mail
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", 20))
MAIL_FROM = os.getenv("MAIL_FROM", "Verity Gem <no-reply@veritygem.com>")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
