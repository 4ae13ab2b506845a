import hashlib
import hmac
from typing import Optional


def sign_webhook_body(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    # Accept both "sha256=<hex>" and a bare hex digest.
    if not signature or not secret:
        return False
    sig = signature.strip()
    if not sig.startswith("sha256="):
        sig = "sha256=" + sig
    return hmac.compare_digest(sign_webhook_body(body, secret), sig)
