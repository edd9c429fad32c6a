"""Phone verification gate used before sign-in.

Dev mode accepts a fixed code. Redis mode stores only an HMAC of a
random code, bound to a session id, with a TTL and an attempt limit.
Delivery of the code (SMS) is outside this service.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import redis

from .config import settings
from .errors import StoreError, ValidationError


logger = logging.getLogger("ridehail.otp")


def normalize_phone(phone: str) -> str:
    raw = re.sub(r"[^\d+]", "", phone or "")
    if raw.startswith("00"):
        raw = "+" + raw[2:]
    if not re.fullmatch(r"\+?\d{7,15}", raw):
        raise ValidationError("invalid phone number")
    return raw if raw.startswith("+") else "+" + raw


@dataclass
class OTPSendResult:
    session_id: str
    is_dev: bool
    code: Optional[str] = None  # only exposed in dev mode


def _hash_code(secret: str, phone: str, session_id: str, nonce: str, code: str) -> str:
    msg = "|".join([phone, session_id, nonce, code]).encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


class OTPGate:
    def __init__(
        self,
        mode: str = "dev",
        dev_code: str = "123456",
        ttl_secs: int = 300,
        max_attempts: int = 5,
        storage_secret: str = "",
        client=None,
    ) -> None:
        if mode not in ("dev", "redis"):
            raise ValueError(f"unknown OTP mode: {mode!r}")
        if mode == "redis" and not storage_secret:
            raise RuntimeError("OTP_STORAGE_SECRET must be configured when OTP_MODE=redis")
        self.mode = mode
        self.dev_code = dev_code
        self.ttl_secs = ttl_secs
        self.max_attempts = max_attempts
        self.storage_secret = storage_secret
        self.client = client

    def send_code(self, phone: str) -> OTPSendResult:
        phone = normalize_phone(phone)
        session = secrets.token_urlsafe(16)
        if self.mode == "dev":
            return OTPSendResult(session_id=session, is_dev=True, code=self.dev_code)
        code = f"{secrets.randbelow(10**6):06d}"
        nonce = secrets.token_hex(16)
        record = {
            "phone": phone,
            "nonce": nonce,
            "created_at": int(time.time()),
            "otp_hash": _hash_code(self.storage_secret, phone, session, nonce, code),
        }
        try:
            pipe = self.client.pipeline()
            pipe.setex(f"otp:{session}", self.ttl_secs, json.dumps(record))
            pipe.setex(f"otp_attempts:{session}", self.ttl_secs, 0)
            pipe.setex(f"otp_phone:{phone}", self.ttl_secs, session)
            pipe.execute()
        except redis.RedisError as exc:
            raise StoreError("otp store unavailable") from exc
        logger.info("otp issued session=%s", session)
        # TODO: hand the code to an SMS provider once one is configured for this service
        return OTPSendResult(session_id=session, is_dev=False)

    def verify_code(self, phone: str, code: str, session_id: Optional[str] = None) -> bool:
        phone = normalize_phone(phone)
        code = (code or "").strip()
        if self.mode == "dev":
            return secrets.compare_digest(code, self.dev_code)
        try:
            session = session_id
            if not session:
                raw = self.client.get(f"otp_phone:{phone}")
                session = raw.decode() if isinstance(raw, bytes) else raw
            if not session:
                return False
            raw = self.client.get(f"otp:{session}")
            if raw is None:
                return False
            record = json.loads(raw.decode() if isinstance(raw, bytes) else raw)
            if not secrets.compare_digest(record.get("phone", ""), phone):
                return False
            attempts = int(self.client.incr(f"otp_attempts:{session}"))
            if attempts > self.max_attempts:
                return False
            computed = _hash_code(self.storage_secret, phone, session, record["nonce"], code)
            if not secrets.compare_digest(record["otp_hash"], computed):
                return False
            self.client.delete(f"otp:{session}", f"otp_attempts:{session}", f"otp_phone:{phone}")
        except redis.RedisError as exc:
            raise StoreError("otp store unavailable") from exc
        return True


@lru_cache(maxsize=1)
def get_gate() -> OTPGate:
    client = redis.from_url(settings.REDIS_URL) if settings.OTP_MODE == "redis" else None
    return OTPGate(
        mode=settings.OTP_MODE,
        dev_code=settings.OTP_DEV_CODE,
        ttl_secs=settings.OTP_TTL_SECS,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        storage_secret=settings.OTP_STORAGE_SECRET,
        client=client,
    )
