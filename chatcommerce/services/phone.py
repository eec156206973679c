import re

_PROTOCOL_PREFIX = re.compile(r"^[a-z]+:", re.IGNORECASE)
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(identifier: object) -> str:
    """Canonical user key: no `whatsapp:` prefix, no leading `+`, digits only."""
    if identifier is None:
        return ""
    text = str(identifier).strip()
    text = _PROTOCOL_PREFIX.sub("", text)
    text = text.lstrip("+")
    return _NON_DIGITS.sub("", text)


def count_digits(text: str) -> int:
    return len(_NON_DIGITS.sub("", text or ""))
