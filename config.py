"""
Application settings

Values come from the environment (a local .env file is loaded first).
Prices are stored in pence.
"""
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Sessions
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# Signs unsubscribe links and authorizes the reminder job. No default on purpose.
CRON_SECRET = os.getenv("CRON_SECRET")

APP_URL = os.getenv("APP_URL", "http://localhost:8000")

# Email provider
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_API_URL = "https://api.resend.com/emails"
EMAIL_FROM = os.getenv("EMAIL_FROM", "TailorSpace <orders@send.tailorspace.uk>")
EMAIL_REPLY_TO = os.getenv("EMAIL_REPLY_TO", "support@send.tailorspace.uk")

# Business constants
DELIVERY_FEE = 700
CURRENCY_SYMBOL = "£"
# Postcode area served; addresses outside it are rejected at checkout.
SERVICE_AREA_PREFIX = "NG"

# Redirect targets for page surfaces
LOGIN_PATH = "/login"
DEFAULT_LANDING_PATH = "/orders"
