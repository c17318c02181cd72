"""Phone numbers as a cross-module correlation key (best effort, exact digits only)."""
import re
from typing import Optional
from urllib.parse import quote

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: Optional[str]) -> str:
    """Strip every non-digit character. Empty string when nothing is left."""
    return _NON_DIGITS.sub("", phone or "")


def whatsapp_link(phone: str, text: str) -> str:
    """wa.me click-to-chat URL for staff when the automated channel is off."""
    return f"https://wa.me/{normalize_phone(phone)}?text={quote(text)}"
