"""Currency lookup for imported accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    symbol: str
    name: str


CURRENCY_MAP: Dict[str, CurrencyInfo] = {
    info.code: info
    for info in (
        CurrencyInfo("PHP", "₱", "Philippine Peso"),
        CurrencyInfo("CNY", "¥", "Chinese Yuan"),
        CurrencyInfo("USD", "$", "US Dollar"),
        CurrencyInfo("EUR", "€", "Euro"),
        CurrencyInfo("GBP", "£", "British Pound"),
        CurrencyInfo("JPY", "¥", "Japanese Yen"),
        CurrencyInfo("INR", "₹", "Indian Rupee"),
        CurrencyInfo("AUD", "A$", "Australian Dollar"),
        CurrencyInfo("CAD", "C$", "Canadian Dollar"),
        CurrencyInfo("MXN", "$", "Mexican Peso"),
        CurrencyInfo("BRL", "R$", "Brazilian Real"),
        CurrencyInfo("KRW", "₩", "South Korean Won"),
        CurrencyInfo("THB", "฿", "Thai Baht"),
        CurrencyInfo("SGD", "S$", "Singapore Dollar"),
        CurrencyInfo("HKD", "HK$", "Hong Kong Dollar"),
    )
}

DEFAULT_CURRENCY = "PHP"


def get_currency_info(code: Optional[str]) -> CurrencyInfo:
    """Look up a currency code, falling back to the default currency."""
    if not code:
        return CURRENCY_MAP[DEFAULT_CURRENCY]
    return CURRENCY_MAP.get(str(code).strip().upper(), CURRENCY_MAP[DEFAULT_CURRENCY])


def format_currency(amount: float, code: Optional[str]) -> str:
    currency = get_currency_info(code)
    return f"{currency.symbol}{abs(amount):.2f}"


def available_currencies() -> List[CurrencyInfo]:
    return list(CURRENCY_MAP.values())
