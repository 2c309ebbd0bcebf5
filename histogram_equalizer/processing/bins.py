"""Bin-count coercion to the canonical power-of-two set."""

import bisect
import re

from ..utils.errors import ErrorCategory, InvalidParameter, log_and_continue
from ..utils.logger import get_logger

logger = get_logger(__name__)

CANONICAL_BIN_COUNTS = (8, 16, 32, 64, 128, 256)

# Console input is read up to the end of the leading integer, so "12.5" means 12
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def resolve_bin_count(requested: int) -> int:
    """
    Coerce a requested bin count to one of CANONICAL_BIN_COUNTS.

    Below 8 gives 8, above 256 gives 256, anything in between is rounded up
    to the next canonical value. Never raises.
    """
    if requested <= CANONICAL_BIN_COUNTS[0]:
        return CANONICAL_BIN_COUNTS[0]
    if requested >= CANONICAL_BIN_COUNTS[-1]:
        return CANONICAL_BIN_COUNTS[-1]
    return CANONICAL_BIN_COUNTS[bisect.bisect_left(CANONICAL_BIN_COUNTS, requested)]


def _parse_int(text) -> int:
    if isinstance(text, bool):
        raise InvalidParameter(f"Bin count must be a number, got {text!r}", setting_name="bins")
    if isinstance(text, int):
        return text
    match = _LEADING_INT.match(str(text)) if text is not None else None
    if match is None:
        raise InvalidParameter(f"Bin count must be a number, got {text!r}", setting_name="bins")
    return int(match.group(1))


def parse_bin_request(text) -> int:
    """
    Resolve a raw bin request (console text, CLI value or int).

    Text is read up to the end of its leading integer ("20abc" is 20);
    input with no leading integer defaults to the smallest bin count.
    """
    try:
        requested = _parse_int(text)
    except InvalidParameter as e:
        log_and_continue(f"{e}; using {CANONICAL_BIN_COUNTS[0]} bins", ErrorCategory.USER_INPUT)
        return CANONICAL_BIN_COUNTS[0]

    bins = resolve_bin_count(requested)
    if bins != requested:
        logger.info("Requested %d bins, using %d", requested, bins)
    return bins
