import math
import time
import logging
from typing import NamedTuple, Optional

from prometheus_client.parser import text_string_to_metric_families

log = logging.getLogger(__name__)


class ExpositionSample(NamedTuple):
    metric: str
    labels: dict
    value: float
    timestamp: int  # milliseconds


def parse_line(line: str, now_ms: Optional[int] = None) -> Optional[ExpositionSample]:
    """
    Parses a single `name{labels} value [timestamp]` line.

    Lines without a label set, with a NaN or infinite value, or rejected by the
    exposition parser yield None.
    A missing timestamp defaults to `now_ms` (acquisition time).
    """
    line = line.strip()
    if not line or line.startswith('#') or '{' not in line:
        return None

    try:
        families = list(text_string_to_metric_families(line))
    except Exception:
        log.debug('Skipping malformed line: %s', line)
        return None

    for family in families:
        for sample in family.samples:
            if not math.isfinite(sample.value):
                log.debug('Skipping non-finite value: %s', line)
                return None
            if sample.timestamp is None:
                timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
            else:
                # the parser reports seconds, the wire format carries milliseconds
                timestamp = int(round(float(sample.timestamp) * 1000))
            return ExpositionSample(sample.name, dict(sample.labels), float(sample.value), timestamp)

    return None


def iter_samples(text, now_ms=None, metric_names=None):
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if metric_names is not None and line.split('{', 1)[0] not in metric_names:
            continue
        sample = parse_line(line, now_ms)
        if sample is not None:
            yield sample
