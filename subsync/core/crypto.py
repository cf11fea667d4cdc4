from __future__ import annotations

from typing import List, Optional, Tuple

import stripe


def parse_signature_header(header: str) -> Tuple[Optional[str], List[str]]:
    t: Optional[str] = None
    v1s: List[str] = []
    for part in (header or "").split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        value = value.strip()
        if key == "t" and value:
            t = value
        elif key == "v1" and value:
            v1s.append(value)
    return t, v1s


def verify_signature(raw_body: bytes, signature_header: str, secret: str, *, tolerance_seconds: int = 0) -> bool:
    """Verify a Stripe-Signature header against the raw request body.

    Accepts when any ``v1`` candidate equals HMAC-SHA256(secret, "{t}.{body}").
    Fails closed on a missing timestamp, no candidates, an empty secret or a
    body that is not UTF-8. ``tolerance_seconds <= 0`` skips the freshness check.
    """
    if not secret:
        return False
    t, v1s = parse_signature_header(signature_header)
    if not t or not t.isdigit() or not v1s:
        return False
    try:
        payload = raw_body.decode("utf-8") if isinstance(raw_body, (bytes, bytearray)) else str(raw_body)
    except UnicodeDecodeError:
        return False
    try:
        stripe.WebhookSignature.verify_header(
            payload,
            ",".join([f"t={t}"] + [f"v1={v}" for v in v1s]),
            secret,
            tolerance=tolerance_seconds if tolerance_seconds > 0 else None,
        )
    except stripe.SignatureVerificationError:
        return False
    return True
