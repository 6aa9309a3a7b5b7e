"""Canonical asset keys for exchange-native market symbols.

Every venue spells the same underlying differently (``BTCUSDT``,
``BTC-PERP``, ``BTC-USD-PERP``, ``BTC/USDC:USDC``). Grouping across venues
needs one key per underlying, so suffixes are stripped in a fixed order:

1. settlement qualifier (``:USDC``), then perpetual/swap markers
2. one quote-currency suffix, longest first, only if a base remains
3. any leftover character outside ``A-Z0-9.``

The steps repeat until the key stops changing, so a key is its own
normalization. A bare quote token (``USDC``, or the base of ``USDCUSDT``)
is kept as the asset.
"""

import re

from fundingarb.exceptions import InvalidSymbolError

_QUALIFIER_RE = re.compile(r":\w+$")
_CONTRACT_RE = re.compile(r"[-_/ ]?(PERP|SWAP)$")
_QUOTE_RE = re.compile(r"[-_/]?(USDT|USDC|BUSD|USD)$")
_BASE_RE = re.compile(r"[A-Z0-9]")
_DISALLOWED_RE = re.compile(r"[^A-Z0-9.]")


def _strip_quote(symbol: str) -> str:
    stripped = _QUOTE_RE.sub("", symbol)
    return stripped if _BASE_RE.search(stripped) else symbol


def _strip_once(symbol: str) -> str:
    symbol = _QUALIFIER_RE.sub("", symbol)
    symbol = _CONTRACT_RE.sub("", symbol)
    symbol = _strip_quote(symbol)
    return _DISALLOWED_RE.sub("", symbol)


def normalize_symbol(raw_symbol: str) -> str:
    """Map an exchange-native symbol to its canonical asset key.

    Args:
        raw_symbol: Symbol as the exchange reports it.

    Returns:
        The base asset, e.g. "BTC" for "BTC-USD-PERP".

    Raises:
        InvalidSymbolError: If nothing is left after stripping.
    """
    symbol = raw_symbol.strip().upper()
    while True:
        stripped = _strip_once(symbol)
        if stripped == symbol:
            break
        symbol = stripped
    if not symbol:
        raise InvalidSymbolError(raw_symbol)
    return symbol
