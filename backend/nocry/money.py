"""Money helpers. Amounts are always integer cents; display is BRL."""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_THOUSANDS_DOT_RE = re.compile(r"\.(?=\d{3}(?:\D|$))")


def to_cents(value: str | int | float | Decimal) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid amount: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        normalized = re.sub(r"\s", "", value.strip()).replace("R$", "")
        normalized = _THOUSANDS_DOT_RE.sub("", normalized).replace(",", ".")
        try:
            number = Decimal(normalized)
        except InvalidOperation as exc:
            raise ValueError(f"invalid amount: {value!r}") from exc
    else:
        raise ValueError(f"invalid amount: {value!r}")
    if not number.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((number * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_brl(cents: int | None) -> str:
    safe = cents if isinstance(cents, int) else 0
    sign = "-" if safe < 0 else ""
    reais, centavos = divmod(abs(safe), 100)
    grouped = f"{reais:,}".replace(",", ".")
    return f"{sign}R$ {grouped},{centavos:02d}"
