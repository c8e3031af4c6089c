from __future__ import annotations

DASH = "—"


def fmt_optional(value, formatter):
    return DASH if value is None else formatter(value)


def fmt_usd(amount: float) -> str:
    return f"${amount:,.2f}"


def fmt_pct(value: float) -> str:
    return f"{value:.2f}%"


def fmt_qty(value: float, precision: int = 3) -> str:
    return f"{value:.{precision}f}"
