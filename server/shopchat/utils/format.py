from __future__ import annotations

ELLIPSIS = "…"


def format_price(amount: float, currency: str = "VND") -> str:
    """Vietnamese-style grouping: ``590000`` -> ``590.000 VND``, ``1234.5`` -> ``1.234,5 VND``."""

    text = f"{amount:,.3f}".rstrip("0").rstrip(".")
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{text} {currency}".strip()


def truncate(text: str, limit: int) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + ELLIPSIS


def mask(secret: str | None, visible: int = 4) -> str:
    if not secret:
        return ""
    if len(secret) <= visible:
        return "*" * len(secret)
    return "*" * (len(secret) - visible) + secret[-visible:]
