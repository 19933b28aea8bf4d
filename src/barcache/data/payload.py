"""Chart document schema shared by data sources, the store and the normalizer.

Payloads follow the Yahoo chart layout::

    chart
        result
            [0]
                meta        {symbol, ...}
                timestamp   [unix seconds, ...]
                indicators
                    quote     [{open, high, low, close, volume}]
                    adjclose  [{adjclose}]      (optional)

Missing samples are encoded as ``null``.
"""

from __future__ import annotations

import json
import math
from typing import Any, Sequence

from barcache.exceptions import InvalidPayloadError

# Shorter payloads cannot hold a single data point
MIN_PAYLOAD_LENGTH = 25

QUOTE_FIELDS = ("open", "high", "low", "close", "volume")


def parse_chart(content: str | None) -> dict[str, Any]:
    """Parse payload text and return the first chart result.

    :param content: Raw JSON text.
    :returns: The ``chart.result[0]`` mapping.
    :raises InvalidPayloadError: If the text is empty, too short, not JSON or
        not shaped like a chart document.
    """
    if not content or len(content) < MIN_PAYLOAD_LENGTH:
        raise InvalidPayloadError("payload is empty or too short")

    try:
        document = json.loads(content)
    except ValueError as e:
        raise InvalidPayloadError(f"payload is not valid JSON: {e}") from e

    try:
        result = document["chart"]["result"][0]
    except (KeyError, IndexError, TypeError) as e:
        chart = document.get("chart") if isinstance(document, dict) else None
        error = chart.get("error") if isinstance(chart, dict) else None
        detail = f" ({error})" if error else ""
        raise InvalidPayloadError(f"payload holds no chart result{detail}") from e

    if not isinstance(result, dict):
        raise InvalidPayloadError("chart result is not a mapping")
    return result


def count_points(content: str | None) -> int:
    """Count the timestamps in a payload.

    :raises InvalidPayloadError: If the payload cannot be parsed.
    """
    timestamps = parse_chart(content).get("timestamp")
    if not isinstance(timestamps, list):
        return 0
    return len(timestamps)


def is_valid_payload(content: str | None) -> bool:
    """Check that a payload parses and holds at least one data point."""
    try:
        return count_points(content) > 0
    except InvalidPayloadError:
        return False


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "item"):
        # numpy scalar
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def build_chart_document(
    symbol: str,
    timestamps: Sequence[int],
    opens: Sequence[Any],
    highs: Sequence[Any],
    lows: Sequence[Any],
    closes: Sequence[Any],
    volumes: Sequence[Any],
    adjcloses: Sequence[Any] | None = None,
) -> str:
    """Serialize parallel series into chart document text.

    NaN and infinite values are written as ``null``.

    :param symbol: Symbol recorded in the document's meta block.
    :param adjcloses: Adjusted closes, or None to omit the adjclose block.
    :returns: JSON text.
    """
    quote = {
        "open": [_clean(v) for v in opens],
        "high": [_clean(v) for v in highs],
        "low": [_clean(v) for v in lows],
        "close": [_clean(v) for v in closes],
        "volume": [_clean(v) for v in volumes],
    }
    indicators: dict[str, Any] = {"quote": [quote]}
    if adjcloses is not None:
        indicators["adjclose"] = [{"adjclose": [_clean(v) for v in adjcloses]}]

    document = {
        "chart": {
            "result": [
                {
                    "meta": {"symbol": symbol, "dataGranularity": "1d"},
                    "timestamp": [int(t) for t in timestamps],
                    "indicators": indicators,
                }
            ],
            "error": None,
        }
    }
    return json.dumps(document, allow_nan=False)
