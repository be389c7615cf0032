"""PayPal order capture.

Capturing is two dependent calls: a client-credentials token exchange, then
the capture itself with that token. Each step has its own typed result and
its own failure attribution (``ProviderError.step``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .errors import CaptureDeclined, ProviderError

log = logging.getLogger(__name__)

COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class AccessToken:
    value: str
    token_type: str = "Bearer"
    expires_in: int = 0

    def header(self) -> str:
        return f"{self.token_type} {self.value}"


@dataclass(frozen=True)
class CaptureResult:
    order_id: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == COMPLETED

    def product_ids(self) -> List[int]:
        """Product ids the client put in ``custom_id`` of each purchase unit."""
        ids: List[int] = []
        for unit in self.details.get("purchase_units") or []:
            if not isinstance(unit, dict):
                continue
            for raw in str(unit.get("custom_id") or "").split(","):
                try:
                    pid = int(raw.strip())
                except ValueError:
                    continue
                if pid not in ids:
                    ids.append(pid)
        return ids


class PayPalClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base: str = "https://api-m.sandbox.paypal.com",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def fetch_access_token(self) -> AccessToken:
        if not (self.client_id and self.client_secret):
            raise ProviderError("PayPal is not configured", step="token")
        try:
            r = self.session.post(
                f"{self.api_base}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.Timeout:
            raise ProviderError("PayPal token request timed out", step="token")
        except requests.RequestException as e:
            raise ProviderError(f"PayPal token request failed: {e}", step="token")
        except ValueError:
            raise ProviderError("PayPal token response is not JSON", step="token")

        value = data.get("access_token") if isinstance(data, dict) else None
        if not value:
            raise ProviderError("PayPal token response has no access_token", step="token")
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError):
            raise ProviderError(f"PayPal token expires_in is not a number: {data.get('expires_in')!r}", step="token")
        return AccessToken(
            value=value,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
        )

    def capture_order(self, order_id: str, token: AccessToken) -> CaptureResult:
        """Capture an approved order.

        A reply from PayPal always yields a ``CaptureResult``, even for 4xx
        error bodies; only transport failures raise.
        """
        try:
            r = self.session.post(
                f"{self.api_base}/v2/checkout/orders/{order_id}/capture",
                headers={"Authorization": token.header(), "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise ProviderError("PayPal capture timed out", step="capture")
        except requests.RequestException as e:
            raise ProviderError(f"PayPal capture failed: {e}", step="capture")

        try:
            details = r.json()
        except ValueError:
            details = {"http_status": r.status_code, "body": (r.text or "")[:500]}
        if not isinstance(details, dict):
            details = {"http_status": r.status_code, "body": details}
        status = details.get("status")
        return CaptureResult(order_id=order_id, status=status if isinstance(status, str) else "", details=details)

    def capture(self, order_id: str) -> CaptureResult:
        """Token exchange then capture; raises ``CaptureDeclined`` unless COMPLETED."""
        token = self.fetch_access_token()
        result = self.capture_order(order_id, token)
        if not result.success:
            log.warning("PayPal order %s not completed (status=%r)", order_id, result.status or None)
            raise CaptureDeclined("Capture not completed", details=result.details)
        log.info("PayPal order %s captured", order_id)
        return result
