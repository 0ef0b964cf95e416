"""
Mercado Pago webhook signature verification.

Header format: `x-signature: ts=<unix>,v1=<hex>` plus `x-request-id`.
The signed manifest is `id:{data.id};request-id:{x-request-id};ts:{ts};`
under HMAC-SHA256 with the webhook secret.
"""
import hmac
from hashlib import sha256
from typing import Optional, Tuple


class SignatureOutcome:
    VALID = "valid"
    SKIPPED = "skipped"      # no secret configured
    MISSING = "missing"      # x-signature or x-request-id absent
    MALFORMED = "malformed"
    MISMATCH = "mismatch"
    LEGACY = "legacy"        # query-string notification, nothing to verify

    UNVERIFIED = (SKIPPED, MISSING, MALFORMED, MISMATCH, LEGACY)


def parse_signature_header(header_val: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Parse "ts=<unix>,v1=<hex>" -> (ts, v1).
    Returns (None, None) if the format is invalid.
    """
    parts = [p.strip() for p in (header_val or "").split(",")]
    kv = dict(p.split("=", 1) for p in parts if "=" in p)
    ts = kv.get("ts", "").strip()
    v1 = kv.get("v1", "").strip().lower()
    if not ts or not ts.isdigit():
        return None, None
    if not v1 or any(c not in "0123456789abcdef" for c in v1):
        return None, None
    return ts, v1


def build_manifest(data_id: str, request_id: str, ts: str) -> str:
    return f"id:{data_id};request-id:{request_id};ts:{ts};"


def compute_signature(secret: str, data_id: str, request_id: str, ts: str) -> str:
    manifest = build_manifest(data_id, request_id, ts)
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), sha256).hexdigest()


def verify_signature(
    secret: str,
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: Optional[str],
    legacy: bool = False,
) -> str:
    """Return the `SignatureOutcome` for one delivery."""
    if legacy:
        return SignatureOutcome.LEGACY
    if not secret:
        return SignatureOutcome.SKIPPED
    if not signature_header or not request_id:
        return SignatureOutcome.MISSING

    ts, v1 = parse_signature_header(signature_header)
    if ts is None or v1 is None:
        return SignatureOutcome.MALFORMED

    expected = compute_signature(secret, data_id or "", request_id, ts)
    if not hmac.compare_digest(expected, v1):
        return SignatureOutcome.MISMATCH
    return SignatureOutcome.VALID
