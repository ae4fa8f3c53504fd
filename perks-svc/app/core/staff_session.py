from __future__ import annotations
from datetime import datetime, timedelta, timezone
import base64
import hashlib
import hmac

from ..core.config import get_settings
settings = get_settings()

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

def _sign(payload: str, secret: str | None = None) -> str:
    key = (secret or settings.staff_session_secret_effective).encode("utf-8")
    return _b64url(hmac.new(key, payload.encode("utf-8"), hashlib.sha256).digest())

def mint_session(perk_id, ttl_minutes: float | None = None, *, now: datetime | None = None, secret: str | None = None) -> str:
    """
    Build a staff session string: ``<perk_id>.<exp_epoch_seconds>.<sig>``.

    The signature is base64url HMAC-SHA256 over ``<perk_id>.<exp>``. Nothing is
    stored server side; any instance holding the secret can verify it.
    """
    ttl = settings.staff_session_ttl_minutes if ttl_minutes is None else ttl_minutes
    exp = int(((now or _now()) + timedelta(minutes=ttl)).timestamp())
    raw = f"{perk_id}.{exp}"
    return f"{raw}.{_sign(raw, secret)}"

def verify_session(raw: str | None, perk_id, *, now: datetime | None = None, secret: str | None = None) -> bool:
    if not raw or not isinstance(raw, str):
        return False
    parts = raw.split(".")
    if len(parts) != 3:
        return False
    pid, exp_str, sig = parts
    if pid != str(perk_id):
        return False
    try:
        exp = int(exp_str)
    except ValueError:
        return False
    if exp <= 0 or int((now or _now()).timestamp()) > exp:
        return False
    expected = _sign(f"{pid}.{exp_str}", secret)
    return hmac.compare_digest(sig.encode("utf-8"), expected.encode("utf-8"))
