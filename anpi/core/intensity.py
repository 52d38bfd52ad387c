"""JMA seismic intensity scale - Pure functions.

Intensity values are kept verbatim as the provider's codes ("5-", "6+")
for storage and display, and converted to a strictly ordered integer rank
when they need to be compared.
"""

# Provider codes, weakest first. Index is the rank.
INTENSITY_SCALE: tuple[str, ...] = ("0", "1", "2", "3", "4", "5-", "5+", "6-", "6+", "7")

_RANKS: dict[str, int] = {code: rank for rank, code in enumerate(INTENSITY_SCALE)}

_LABELS: dict[str, str] = {
    "5-": "5弱",
    "5+": "5強",
    "6-": "6弱",
    "6+": "6強",
}

_ALIASES: dict[str, str] = {
    "5弱": "5-",
    "5強": "5+",
    "6弱": "6-",
    "6強": "6+",
}

# Full-width digits appear in headline text ("震度５弱")
_FULL_WIDTH = str.maketrans("０１２３４５６７８９", "0123456789")

UNKNOWN_RANK = -1


def normalize_intensity(value: str | None) -> str | None:
    """Canonicalize an intensity value to a provider code.

    Pure function.

    Accepts provider codes ("5-"), Japanese labels ("5弱", "震度５弱") and
    the "!5-" form the provider uses for "5- or above, not yet received".

    Args:
        value: Raw intensity value

    Returns:
        Canonical code from INTENSITY_SCALE, or None if unrecognized
    """
    if value is None:
        return None

    text = str(value).strip().translate(_FULL_WIDTH)
    text = text.removeprefix("震度").lstrip("!")
    text = _ALIASES.get(text, text)

    if text in _RANKS:
        return text
    return None


def intensity_rank(value: str | None) -> int:
    """Convert an intensity value to its ordinal rank.

    Pure function.

    Returns:
        0..9 for known values, UNKNOWN_RANK (-1) for missing or unknown ones
    """
    code = normalize_intensity(value)
    if code is None:
        return UNKNOWN_RANK
    return _RANKS[code]


def meets_min_intensity(value: str | None, minimum: str | None) -> bool:
    """Check whether an observed intensity reaches a threshold.

    Pure function. An unknown observed value never meets a threshold.
    """
    rank = intensity_rank(value)
    if rank == UNKNOWN_RANK:
        return False
    return rank >= max(intensity_rank(minimum), 0)


def max_intensity(values: list[str | None]) -> str | None:
    """Return the strongest known intensity in a list, or None."""
    known = [code for code in (normalize_intensity(v) for v in values) if code is not None]
    if not known:
        return None
    return max(known, key=_RANKS.__getitem__)


def intensity_label(value: str | None) -> str:
    """Format an intensity for display ("5-" -> "5弱").

    Pure function.
    """
    code = normalize_intensity(value)
    if code is None:
        return "不明"
    return _LABELS.get(code, code)
