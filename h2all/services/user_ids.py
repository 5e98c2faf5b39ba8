from __future__ import annotations

import base64
import binascii
import re

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(raw_email: str) -> str:
    return raw_email.strip().lower()


def is_valid_email(email: str) -> bool:
    return EMAIL_PATTERN.fullmatch(email) is not None


def user_id_from_email(email: str) -> str:
    """Reversible user id: standard base64 of the lowercased address."""
    return base64.b64encode(normalize_email(email).encode("utf-8")).decode("ascii")


def email_from_user_id(user_id: str) -> str | None:
    try:
        return base64.b64decode(user_id.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None
