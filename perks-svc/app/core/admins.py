from __future__ import annotations
import re
from typing import Any, Dict

from .config import get_settings
settings = get_settings()

def normalize_email(raw: str | None) -> str:
    """Lowercase, drop ``+tag`` and fold gmail/googlemail dot variants."""
    if not raw:
        return ""
    email = raw.strip().lower()
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    local = local.split("+", 1)[0]
    if domain in ("gmail.com", "googlemail.com"):
        return f"{local.replace('.', '')}@gmail.com"
    return f"{local}@{domain}"

def admin_allowlist(src: str | None = None) -> set[str]:
    raw = settings.admin_emails if src is None else src
    return {e for e in (normalize_email(s) for s in re.split(r"[,;]+", raw or "")) if e}

def is_admin(claims: Dict[str, Any]) -> bool:
    if claims.get("role") == "admin" or claims.get("is_admin") is True:
        return True
    email = normalize_email(claims.get("email"))
    return bool(email) and email in admin_allowlist()
