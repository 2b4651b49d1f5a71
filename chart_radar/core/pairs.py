"""
Trading pair normalization.

Maps free-form instrument names ("bitcoin", "gold", "euro/dollar", "EURUSD")
to the BASE/QUOTE form used in prompts and history.
"""

import re
from typing import Dict, Optional

UNKNOWN_PAIR = "Unknown Pair"

CRYPTO_SYMBOLS: Dict[str, str] = {
    "bitcoin": "BTC",
    "ethereum": "ETH",
    "ripple": "XRP",
    "litecoin": "LTC",
    "cardano": "ADA",
    "polkadot": "DOT",
    "dogecoin": "DOGE",
    "solana": "SOL",
    "tetherus": "USDT",
    "tether": "USDT",
    "usd coin": "USDC",
    "binance coin": "BNB",
    "binance": "BNB",
    "chainlink": "LINK",
    "stellar": "XLM",
    "vechain": "VET",
    "monero": "XMR",
    "avalanche": "AVAX",
    "uniswap": "UNI",
    "polygon": "MATIC",
    "aave": "AAVE",
    "maker": "MKR",
    "compound": "COMP",
}

# Longer names first so "australian dollar" wins over "dollar"
FOREX_SYMBOLS: Dict[str, str] = {
    "australian dollar": "AUD",
    "canadian dollar": "CAD",
    "new zealand dollar": "NZD",
    "hong kong dollar": "HKD",
    "singapore dollar": "SGD",
    "british pound": "GBP",
    "japanese yen": "JPY",
    "swiss franc": "CHF",
    "chinese yuan": "CNY",
    "turkish lira": "TRY",
    "russian ruble": "RUB",
    "swedish krona": "SEK",
    "norwegian krone": "NOK",
    "euro": "EUR",
    "dollar": "USD",
    "pound": "GBP",
    "yen": "JPY",
}

COMMODITY_SYMBOLS: Dict[str, str] = {
    "gold": "XAU",
    "silver": "XAG",
    "platinum": "XPT",
    "palladium": "XPD",
    "crude oil": "OIL",
    "natural gas": "GAS",
}

QUOTE_ONLY = {"USDT", "USDC", "BUSD", "DAI"}

_STRICT_PAIR_PATTERN = re.compile(r"^[A-Z0-9]{2,5}/[A-Z0-9]{2,5}$")
_SIX_LETTER_PATTERN = re.compile(r"^[A-Za-z]{6}$")


def _lookup(name: str, *tables: Dict[str, str]) -> Optional[str]:
    lowered = name.lower()
    for table in tables:
        for key, symbol in table.items():
            if key in lowered:
                return symbol
    return None


def format_trading_pair(pair_name: Optional[str]) -> str:
    """Format any pair description as BASE/QUOTE.

    Args:
        pair_name: Pair symbol or instrument name

    Returns:
        Upper-case BASE/QUOTE string, or "Unknown Pair" for empty input
    """
    if not pair_name or not pair_name.strip():
        return UNKNOWN_PAIR
    pair_name = pair_name.strip()

    if "/" not in pair_name:
        crypto = _lookup(pair_name, CRYPTO_SYMBOLS)
        if crypto:
            if crypto in QUOTE_ONLY:
                return f"BTC/{crypto}"
            return f"{crypto}/USDT"

        commodity = _lookup(pair_name, COMMODITY_SYMBOLS)
        if commodity:
            return f"{commodity}/USD"

        if _SIX_LETTER_PATTERN.match(pair_name):
            return f"{pair_name[:3].upper()}/{pair_name[3:].upper()}"

        return pair_name.upper()

    parts = pair_name.split("/")
    if len(parts) == 2:
        base, quote = (part.strip() for part in parts)
        tables = (CRYPTO_SYMBOLS, FOREX_SYMBOLS, COMMODITY_SYMBOLS)
        base = _lookup(base, *tables) or base
        quote = _lookup(quote, *tables) or quote
        return f"{base.upper()}/{quote.upper()}"

    return pair_name.upper()


def is_valid_trading_pair(pair_name: Optional[str]) -> bool:
    """Check for the strict upper-case BASE/QUOTE form."""
    return bool(pair_name) and bool(_STRICT_PAIR_PATTERN.match(pair_name))
