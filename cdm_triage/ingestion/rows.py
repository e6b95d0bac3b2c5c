"""
Row-level parsing for delimited CDM exports.

Vendor schemas vary, so headers are matched by substring and every numeric
field has a fallback. Only rows that are too short, or that carry values
outside their physical range, are rejected.
"""

import logging
import math
import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError

from cdm_triage.models.event import CdmEvent, GateResult, Gates, TriageLane, Vector3, as_utc
from cdm_triage.models.policy import PolicyConfig
from cdm_triage.random_source import RandomSource
from cdm_triage.triage.classifier import classify

log = logging.getLogger(__name__)

DEFAULT_MISS_DISTANCE = 1000.0     # meters
DEFAULT_RELATIVE_SPEED = 7500.0    # m/s
DEFAULT_PC = 0.0
MIN_COLUMNS = 3

# Tried in order when a timestamp is not already an ISO date-time token.
_TIMESTAMP_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d %b %Y %H:%M:%S",
    "%d %b %Y",
    "%b %d %Y %H:%M:%S",
    "%b %d, %Y %H:%M:%S",
    "%b %d, %Y",
    "%Y-%j %H:%M:%S",
)

_LEADING_NUMBER = re.compile(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class MalformedRow(ValueError):
    """A row that cannot be turned into an event."""
    pass


class HeaderSpec:
    """Delimiter and lower-cased header tokens sniffed from the first line."""

    def __init__(self, delimiter: str, headers: List[str]):
        self.delimiter = delimiter
        self.headers = headers
        self._index_cache: Dict[str, Optional[int]] = {}

    @classmethod
    def sniff(cls, line: str) -> "HeaderSpec":
        if "\t" in line:
            delimiter = "\t"
        elif ";" in line:
            delimiter = ";"
        else:
            delimiter = ","
        headers = [h.strip() for h in line.lower().split(delimiter)]
        return cls(delimiter, headers)

    @property
    def min_columns(self) -> int:
        return min(MIN_COLUMNS, len(self.headers))

    def index_of(self, key: str) -> Optional[int]:
        """Position of the first header containing `key`."""
        if key not in self._index_cache:
            self._index_cache[key] = next(
                (i for i, h in enumerate(self.headers) if key in h), None
            )
        return self._index_cache[key]


def parse_number(raw: Optional[str], default: float) -> float:
    """Leading numeric prefix of `raw`, or `default` if there is none."""
    if not raw:
        return default
    match = _LEADING_NUMBER.match(raw)
    if not match:
        return default
    value = float(match.group(0))
    return value if math.isfinite(value) else default


def parse_timestamp(raw: str) -> Optional[datetime]:
    """Parse an absolute timestamp, returning None if nothing fits."""
    text = raw.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    if "T" in text:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return as_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def normalize_tca(raw: Optional[str], now: datetime) -> datetime:
    if not raw:
        return now
    parsed = parse_timestamp(raw)
    if parsed is None:
        log.warning("Unparseable TCA %r, using current time.", raw)
        return now
    return parsed


def _field(values: List[str], header: HeaderSpec, *keys: str) -> Optional[str]:
    """First non-empty value among the headers matching `keys`, in order."""
    for key in keys:
        idx = header.index_of(key)
        if idx is not None and idx < len(values) and values[idx]:
            return values[idx]
    return None


def parse_row(
    line: str,
    header: HeaderSpec,
    policy: PolicyConfig,
    rng: RandomSource,
    now: datetime,
    fallback_id: str,
) -> Optional[CdmEvent]:
    """
    Turn one delimited line into a classified CdmEvent.

    Returns None for blank lines. Raises MalformedRow for rows with fewer
    than `header.min_columns` tokens or with out-of-range values. Geometry
    and gate values are not present in flat exports and are filled with
    synthetic placeholders.
    """
    if not line.strip():
        return None
    values = [v.strip() for v in line.split(header.delimiter)]
    if len(values) < header.min_columns:
        raise MalformedRow(
            f"expected at least {header.min_columns} columns, got {len(values)}"
        )

    miss_distance = parse_number(_field(values, header, "miss"), DEFAULT_MISS_DISTANCE)
    relative_speed = parse_number(
        _field(values, header, "speed", "velocity"), DEFAULT_RELATIVE_SPEED
    )
    pc_analytic = parse_number(_field(values, header, "prob", "pc"), DEFAULT_PC)

    placeholder = "Placeholder (not in source)"
    hbr = 5.0 + rng.random() * 5.0
    gates = Gates(
        eta=GateResult(value=rng.random() * 15.0, reason=placeholder),
        tangency=GateResult(value=0.9 + rng.random() * 0.1, reason=placeholder),
        conditioning=GateResult(value=rng.random() * 8.0, reason=placeholder),
    )
    relative_position = rng.vector(miss_distance)
    relative_velocity = rng.vector(relative_speed)

    try:
        event = CdmEvent(
            id=_field(values, header, "id") or fallback_id,
            object1=_field(values, header, "object1") or "UNKNOWN_1",
            object2=_field(values, header, "object2") or "UNKNOWN_2",
            tca=normalize_tca(_field(values, header, "tca"), now),
            creation_date=now,
            miss_distance=miss_distance,
            relative_speed=relative_speed,
            pc_analytic=pc_analytic,
            hbr=hbr,
            gates=gates,
            lane=TriageLane.ANALYTIC_OK,
            relative_position=relative_position,
            relative_velocity=relative_velocity,
            covariance_diagonal=Vector3(x=50.0, y=500.0, z=50.0),
        )
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors())
        raise MalformedRow(f"out-of-range value in: {fields}") from exc
    return classify(event, policy, now)
