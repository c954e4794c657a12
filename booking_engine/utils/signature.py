# booking_engine/utils/signature.py
"""
HMAC-SHA256 webhook signature checks for the voice channel.

Accepted header shapes:
    <hex or base64 digest>
    t=<unix seconds>,v1=<digest>[,v1=<digest>...]
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import List, Optional, Tuple

SIGNATURE_HEADERS = ("x-voice-signature", "x-retell-signature", "signature")
TIMESTAMP_HEADERS = ("x-voice-timestamp", "x-retell-timestamp")
SIGNATURE_KEYS = ("v1", "sig", "signature")


def parse_signature_header(header: Optional[str]) -> Tuple[List[str], Optional[str]]:
    """Split a signature header into (candidate signatures, timestamp)."""
    if not header:
        return [], None
    signatures: List[str] = []
    timestamp = None
    for part in (p.strip() for p in header.split(",")):
        if not part:
            continue
        key, sep, value = part.partition("=")
        key, value = key.strip(), value.strip()
        # base64 padding leaves '=' with nothing after it
        if not sep or not value or key not in ("t", *SIGNATURE_KEYS):
            signatures.append(part)
            continue
        if key == "t":
            timestamp = value
        else:
            signatures.append(value)
    if not signatures:
        signatures.append(header.strip())
    return signatures, timestamp


def _timestamp_ok(timestamp: Optional[str], max_skew_seconds: int, now: Optional[float]) -> bool:
    if not timestamp:
        return True
    try:
        ts = float(timestamp)
    except ValueError:
        return True
    current = time.time() if now is None else now
    return abs(current - ts) <= max_skew_seconds


def verify_hmac_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    timestamp_header: Optional[str] = None,
    max_skew_seconds: int = 300,
    now: Optional[float] = None,
) -> bool:
    if not signature_header or not secret:
        return False
    signatures, timestamp = parse_signature_header(signature_header)
    if not _timestamp_ok(timestamp or timestamp_header, max_skew_seconds, now):
        return False

    digest = hmac.new(secret.encode(), raw_body, hashlib.sha256).digest()
    expected = (digest.hex(), base64.b64encode(digest).decode())
    return any(
        hmac.compare_digest(sig.encode(), candidate.encode())
        for sig in signatures
        for candidate in expected
    )


def read_signature(headers) -> Tuple[Optional[str], Optional[str]]:
    """(signature, timestamp) from a request's headers, first match wins."""
    signature = next((headers.get(h) for h in SIGNATURE_HEADERS if headers.get(h)), None)
    timestamp = next((headers.get(h) for h in TIMESTAMP_HEADERS if headers.get(h)), None)
    return signature, timestamp
