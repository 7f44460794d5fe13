"""
Paystack gateway client.

Thin async wrapper over the Paystack REST API: start a transaction, look up
its status, and check webhook signatures.
"""
import hashlib
import hmac
import logging
from typing import Optional

import aiohttp

from api.config import settings
from core.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class PaystackService:
    """Service for Paystack payment processing."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.paystack_timeout)
        if not self.secret_key:
            logger.warning("Paystack not configured - missing secret key")

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        """Call Paystack and return the ``data`` object of a successful response."""
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=payload, headers=self.headers) as resp:
                    body = await resp.json(content_type=None)
                    status = resp.status
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Paystack {method} {path} failed: {e}")
            raise UpstreamError(f"Payment gateway unreachable: {e}") from e

        if not isinstance(body, dict):
            body = {"status": False, "message": "Malformed gateway response"}

        if status >= 400 or not body.get("status"):
            message = body.get("message") or f"Payment gateway error (HTTP {status})"
            logger.error(f"Paystack {method} {path} rejected: {message}")
            raise UpstreamError(message, payload=body)

        return body.get("data") or {}

    async def initialize(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str,
        metadata: Optional[dict] = None,
    ) -> dict:
        """
        Start a transaction.

        Args:
            email: Payer e-mail
            amount_minor: Amount in the currency's minor unit (kobo)
            reference: Our unique payment reference
            callback_url: Where the payer is sent after checkout

        Returns:
            Gateway data with authorization_url, access_code and reference
        """
        payload = {
            "email": email,
            "amount": amount_minor,
            "reference": reference,
            "callback_url": callback_url,
        }
        if metadata:
            payload["metadata"] = metadata
        data = await self._request("POST", "/transaction/initialize", payload)
        logger.info(f"Paystack transaction initialized: {reference}", extra={"reference": reference})
        return data

    async def verify(self, reference: str) -> dict:
        """Look up a transaction; returns gateway data including ``status``."""
        return await self._request("GET", f"/transaction/verify/{reference}")

    @staticmethod
    def compute_signature(raw_body: bytes, secret: str) -> str:
        return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()

    @staticmethod
    def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
        """Check the ``x-paystack-signature`` header against the raw request body."""
        if not signature or not secret:
            return False
        expected = PaystackService.compute_signature(raw_body, secret)
        return hmac.compare_digest(expected, signature)
