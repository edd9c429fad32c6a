"""Payment processor contract and implementations.

The core only needs ``charge``/``refund`` returning success plus a
reference to store; gateway protocol details stay behind this seam.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

import httpx
from prometheus_client import Counter

from .config import settings
from .errors import PaymentFailed


logger = logging.getLogger("ridehail.payments")

PAY_CALLS = Counter(
    "ridehail_payment_processor_calls_total",
    "Payment processor calls",
    ["op", "result"],  # result: ok|declined|err|skipped_cb_open
)

PAYMENT_METHODS = ("cash", "card", "upi", "wallet")


@dataclass(frozen=True)
class ChargeResult:
    ok: bool
    reference: Optional[str]
    status: str


class PaymentProcessor(Protocol):
    """Gateways dedupe retries on ``idempotency_key``; one key per logical charge."""

    def charge(
        self, booking_id: uuid.UUID, amount: int, method: str, idempotency_key: Optional[str] = None
    ) -> ChargeResult:
        ...

    def refund(
        self, booking_id: uuid.UUID, amount: int, reference: Optional[str], idempotency_key: Optional[str] = None
    ) -> ChargeResult:
        ...


def new_idempotency_key(booking_id: uuid.UUID, op: str) -> str:
    return f"ridehail:{booking_id}:{op}:{uuid.uuid4().hex}"


class _CBState:
    def __init__(self) -> None:
        self.fails: int = 0
        self.open_until: datetime | None = None


class CircuitBreaker:
    def __init__(self, enabled: bool, threshold: int, cooldown_secs: int) -> None:
        self.enabled = enabled
        self.threshold = max(1, int(threshold))
        self.cooldown = timedelta(seconds=max(1, int(cooldown_secs)))
        self._states: Dict[str, _CBState] = {}
        self._lock = threading.Lock()

    def _get(self, op: str) -> _CBState:
        st = self._states.get(op)
        if st is None:
            st = _CBState()
            self._states[op] = st
        return st

    def allowed(self, op: str) -> bool:
        if not self.enabled:
            return True
        with self._lock:
            st = self._get(op)
            if st.open_until and datetime.now(timezone.utc) < st.open_until:
                PAY_CALLS.labels(op, "skipped_cb_open").inc()
                return False
        return True

    def record(self, op: str, ok: bool) -> None:
        with self._lock:
            st = self._get(op)
            if ok:
                st.fails = 0
                st.open_until = None
                return
            st.fails += 1
            if self.enabled and st.fails >= self.threshold:
                st.open_until = datetime.now(timezone.utc) + self.cooldown
                logger.warning("payment circuit open for %s after %d failures", op, st.fails)

    def snapshot(self) -> Dict[str, dict]:
        now = datetime.now(timezone.utc)
        with self._lock:
            return {
                k: {
                    "fails": v.fails,
                    "open": bool(v.open_until and now < v.open_until),
                    "open_until": v.open_until.isoformat() if v.open_until else None,
                }
                for k, v in self._states.items()
            }


def sign_headers(payload: dict, secret: str, ts: Optional[str] = None) -> Dict[str, str]:
    ts_val = ts or str(int(time.time()))
    msg = (ts_val + json.dumps(payload, separators=(",", ":"))).encode()
    sign = hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()
    return {"X-Internal-Ts": ts_val, "X-Internal-Sign": sign, "Content-Type": "application/json"}


class HttpPaymentProcessor:
    """Charges through the internal payments service over HTTP."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        timeout: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(False, 1, 1)
        self._transport = transport

    def _post(self, op: str, path: str, body: dict, idempotency_key: str) -> ChargeResult:
        if not self.breaker.allowed(op):
            raise PaymentFailed("payment processor temporarily unavailable")
        headers = sign_headers(body, self.secret)
        headers["X-Idempotency-Key"] = idempotency_key
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                r = client.post(f"{self.base_url}{path}", json=body, headers=headers)
        except httpx.HTTPError as exc:
            self.breaker.record(op, False)
            PAY_CALLS.labels(op, "err").inc()
            logger.warning("payment %s transport error: %s", op, exc)
            raise PaymentFailed("payment processor unreachable") from exc
        if r.status_code >= 500:
            self.breaker.record(op, False)
            PAY_CALLS.labels(op, "err").inc()
            raise PaymentFailed(f"payment processor error ({r.status_code})")
        self.breaker.record(op, True)
        data = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
        if r.status_code >= 400:
            PAY_CALLS.labels(op, "declined").inc()
            return ChargeResult(ok=False, reference=data.get("id"), status=str(data.get("detail") or "declined"))
        PAY_CALLS.labels(op, "ok").inc()
        return ChargeResult(ok=True, reference=data.get("id"), status=str(data.get("status") or "ok"))

    def charge(
        self, booking_id: uuid.UUID, amount: int, method: str, idempotency_key: Optional[str] = None
    ) -> ChargeResult:
        body = {"booking_id": str(booking_id), "amount": int(amount), "method": method}
        key = idempotency_key or new_idempotency_key(booking_id, "charge")
        return self._post("charge", "/internal/charges", body, key)

    def refund(
        self, booking_id: uuid.UUID, amount: int, reference: Optional[str], idempotency_key: Optional[str] = None
    ) -> ChargeResult:
        body = {"booking_id": str(booking_id), "amount": int(amount), "reference": reference}
        key = idempotency_key or new_idempotency_key(booking_id, "refund")
        return self._post("refund", "/internal/refunds", body, key)


class CashPaymentProcessor:
    """Offline settlement: the driver collects; nothing leaves the service."""

    def charge(
        self, booking_id: uuid.UUID, amount: int, method: str, idempotency_key: Optional[str] = None
    ) -> ChargeResult:
        PAY_CALLS.labels("charge", "ok").inc()
        return ChargeResult(ok=True, reference=f"{method}:{booking_id}:{uuid.uuid4().hex[:12]}", status="recorded")

    def refund(
        self, booking_id: uuid.UUID, amount: int, reference: Optional[str], idempotency_key: Optional[str] = None
    ) -> ChargeResult:
        PAY_CALLS.labels("refund", "ok").inc()
        return ChargeResult(ok=True, reference=f"refund:{booking_id}:{uuid.uuid4().hex[:12]}", status="recorded")


def default_processor() -> PaymentProcessor:
    if settings.PAYMENTS_BASE_URL:
        breaker = CircuitBreaker(
            settings.PAYMENTS_CB_ENABLED,
            settings.PAYMENTS_CB_THRESHOLD,
            settings.PAYMENTS_CB_COOLDOWN_SECS,
        )
        return HttpPaymentProcessor(
            settings.PAYMENTS_BASE_URL,
            settings.PAYMENTS_INTERNAL_SECRET,
            timeout=settings.PAYMENTS_TIMEOUT_SECS,
            breaker=breaker,
        )
    return CashPaymentProcessor()
