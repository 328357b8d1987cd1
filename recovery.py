"""
Signed links sent in emails.

Unsubscribe links carry the user id and an HMAC-SHA256 of it keyed with
CRON_SECRET. The signature is a capability for one thing only: turning the
cart_reminders preference off. Recovery links carry a random token that is
looked up in cart_reminders.
"""
import hashlib
import hmac
import uuid
from typing import Optional
from urllib.parse import urlencode

import config


def generate_recovery_token() -> str:
    return str(uuid.uuid4())


def build_recovery_url(token: str) -> str:
    return f"{config.APP_URL}/recover?{urlencode({'token': token})}"


def sign_user_id(user_id: str, secret: Optional[str] = None) -> str:
    secret = secret if secret is not None else config.CRON_SECRET
    if not secret:
        raise RuntimeError("CRON_SECRET is not set; cannot sign unsubscribe links")
    return hmac.new(secret.encode(), user_id.encode(), hashlib.sha256).hexdigest()


def build_unsubscribe_url(user_id: str) -> str:
    query = urlencode({"uid": user_id, "sig": sign_user_id(user_id)})
    return f"{config.APP_URL}/api/unsubscribe?{query}"


def verify_unsubscribe_signature(user_id: Optional[str], signature: Optional[str], secret: Optional[str] = None) -> bool:
    secret = secret if secret is not None else config.CRON_SECRET
    if not secret or not user_id or not signature:
        return False
    expected = hmac.new(secret.encode(), user_id.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)
