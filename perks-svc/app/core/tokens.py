from __future__ import annotations
import secrets

# URL-safe, and no 0/O, 1/l/I look-alikes when a pass is read out loud
TOKEN_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
TOKEN_LENGTH = 24  # 24 * log2(57) ~= 140 bits

def new_token(length: int = TOKEN_LENGTH) -> str:
    """Opaque random token used for redeem passes and staff unlock links."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))
