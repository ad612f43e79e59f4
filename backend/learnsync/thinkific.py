"""Thinkific admin API helpers: webhook registration and signature checks."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .config import Settings
from .errors import InvalidSignature, ThinkificApiError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Thinkific-Hmac-Sha256"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> None:
    if not signature:
        raise InvalidSignature("Missing webhook signature")
    expected = compute_signature(body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise InvalidSignature("Invalid signature")


class ThinkificClient:
    def __init__(
        self,
        api_key: Optional[str],
        subdomain: Optional[str],
        *,
        base_url: str = "https://api.thinkific.com/api/v2",
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key
        self._subdomain = subdomain
        self._base_url = base_url.rstrip("/")
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Optional[httpx.Client] = None) -> "ThinkificClient":
        return cls(
            settings.thinkific_api_key,
            settings.thinkific_subdomain,
            base_url=settings.thinkific_api_base,
            client=client,
        )

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise ThinkificApiError("THINKIFIC_API_KEY is not configured.")
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._subdomain:
            headers["X-Auth-Subdomain"] = self._subdomain
        return headers

    def create_webhook(self, topic: str, target_url: str) -> Dict[str, Any]:
        headers = self._headers()
        local_client = self._client or httpx.Client(timeout=30)
        close_client = self._client is None
        try:
            response = local_client.post(
                f"{self._base_url}/webhooks",
                json={"topic": topic, "target_url": target_url},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ThinkificApiError(
                f"Creating {topic} webhook returned {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ThinkificApiError(f"Creating {topic} webhook failed: {exc}") from exc
        finally:
            if close_client:
                local_client.close()
        data: Dict[str, Any] = response.json()
        logger.info("%s webhook created: %s", topic, data.get("id"))
        return data

    def register_webhooks(self, topics: Iterable[str], target_url: str) -> List[str]:
        """Register each topic; failures are logged and the remaining topics still run."""
        registered: List[str] = []
        for topic in topics:
            try:
                self.create_webhook(topic, target_url)
            except ThinkificApiError as exc:
                logger.error("Error creating %s webhook: %s", topic, exc)
                continue
            registered.append(topic)
        return registered


__all__ = [
    "SIGNATURE_HEADER",
    "ThinkificClient",
    "compute_signature",
    "verify_signature",
]
