"""
Cloudflare Turnstile bot check
"""
import logging
from typing import Optional

import httpx

from ...core.config import settings

logger = logging.getLogger(__name__)

TURNSTILE_TIMEOUT = 10.0


class TurnstileVerifier:
    """
    Server-side verification of a Turnstile token.

    Fails closed: a missing secret, a missing token, a network error or
    any response other than success=true all count as a failed check.
    """

    def __init__(self, secret_key: Optional[str] = None, verify_url: Optional[str] = None):
        self.secret_key = secret_key if secret_key is not None else settings.TURNSTILE_SECRET_KEY
        self.verify_url = verify_url or settings.TURNSTILE_VERIFY_URL

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        if not self.secret_key:
            logger.warning("[Turnstile] No secret configured, failing check")
            return False
        if not token:
            return False

        form = {"secret": self.secret_key, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=TURNSTILE_TIMEOUT) as client:
                response = await client.post(self.verify_url, data=form)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[Turnstile] Verification request failed: {e}")
            return False

        success = payload.get("success") is True
        if not success:
            logger.info(f"[Turnstile] Token rejected: {payload.get('error-codes')}")
        return success


_verifier: Optional[TurnstileVerifier] = None


def get_turnstile_verifier() -> TurnstileVerifier:
    """Get or create the Turnstile verifier singleton"""
    global _verifier
    if _verifier is None:
        _verifier = TurnstileVerifier()
    return _verifier
