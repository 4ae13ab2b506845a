"""
Client for the hosted `get-payment-status` function.

The function reads the payment record, asks the gateway when it is still
pending, updates the record and answers `{id, status, status_detail}`.
"""
import asyncio
import json
import socket
import urllib.error
import urllib.request

from .errors import TransientSettlementError
from .settlement import PaymentStatus


class PaymentStatusClient:
    def __init__(self, url: str, api_key: str = "", timeout: float = 10.0):
        self.url = (url or "").strip()
        self.api_key = (api_key or "").strip()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "PaymentStatusClient":
        return cls(settings.payment_status_url, settings.payment_status_key, settings.payment_status_timeout)

    def _http_post_json(self, payload: dict) -> dict:
        data = json.dumps(payload, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        req = urllib.request.Request(self.url, data=data, headers=headers, method="POST")
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            body = resp.read().decode("utf-8") if resp else ""
        if not body:
            return {}
        return json.loads(body)

    def check_status(self, payment_id: str) -> PaymentStatus:
        if not self.url:
            raise TransientSettlementError("payment status url is not configured")
        try:
            body = self._http_post_json({"payment_id": payment_id})
        except urllib.error.HTTPError as exc:
            # The function answers 400 with {"error": ...} for unknown payments; still
            # worth retrying because the record may not be mirrored yet.
            raise TransientSettlementError(f"payment status http {exc.code}") from exc
        except (urllib.error.URLError, socket.timeout, TimeoutError) as exc:
            raise TransientSettlementError(f"payment status unreachable: {exc}") from exc
        except ValueError as exc:
            raise TransientSettlementError("payment status returned invalid json") from exc

        if not isinstance(body, dict) or body.get("error"):
            detail = body.get("error") if isinstance(body, dict) else "unexpected payload"
            raise TransientSettlementError(f"payment status error: {detail}")
        status = str(body.get("status") or "").strip().lower()
        if not status:
            raise TransientSettlementError("payment status missing in response")
        return PaymentStatus(status=status, raw=body)

    async def acheck_status(self, payment_id: str) -> PaymentStatus:
        return await asyncio.to_thread(self.check_status, payment_id)
