"""
Resource impact of a version change.

Containers present in both the current and the baseline version are compared by
the p95 of their CPU and memory samples within a time window. The percent deltas
are averaged into a score; pod and deployment scores average the container ones.
"""

import enum
import math
import logging
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional

from django.conf import settings
from django.utils import timezone

from krt.deployments import find_snapshot, previous_snapshot, version_snapshots

log = logging.getLogger(__name__)


class ImpactStatus(enum.Enum):
    DEGRADED = 'degraded'
    IMPROVED = 'improved'
    STABLE = 'stable'
    UNKNOWN = 'unknown'


class ResourceStats(NamedTuple):
    cpu_p95: float
    memory_p95: float


@dataclass(frozen=True)
class ContainerImpact:
    container_name: str
    status: ImpactStatus
    score: Optional[float] = None
    cpu_delta_percent: Optional[float] = None
    memory_delta_percent: Optional[float] = None
    current: Optional[ResourceStats] = None
    baseline: Optional[ResourceStats] = None


@dataclass(frozen=True)
class Impact:
    status: ImpactStatus
    score: Optional[float]
    degraded_count: int = 0
    improved_count: int = 0
    containers: List[ContainerImpact] = field(default_factory=list)


class VersionTotal(NamedTuple):
    version: str
    created_at: object
    cpu_p95_total: float
    memory_p95_total: float


def percentile(values, p):
    """
    Linear interpolation between closest ranks. None for no values.
    """
    if not values:
        return None
    ordered = sorted(values)
    rank = p / 100 * (len(ordered) - 1)
    low = math.floor(rank)
    high = math.ceil(rank)
    if low == high:
        return ordered[low]
    weight = rank - low
    return ordered[low] * (1 - weight) + ordered[high] * weight


def delta_percent(current, baseline):
    if current is None or baseline is None:
        return None
    if not math.isfinite(current) or not math.isfinite(baseline):
        return None
    if baseline == 0:
        return 0.0 if current == 0 else None
    return (current - baseline) / baseline * 100


def mean(values):
    values = [v for v in values if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def classify_impact(score):
    if score is None:
        return ImpactStatus.UNKNOWN
    if score >= settings.IMPACT_DEGRADED_PERCENT:
        return ImpactStatus.DEGRADED
    if score <= settings.IMPACT_IMPROVED_PERCENT:
        return ImpactStatus.IMPROVED
    return ImpactStatus.STABLE


def resource_stats(samples, since=None, p=None):
    """
    :param samples: objects with sampled_at, cpu_millicores and memory_bytes
    :return: ResourceStats or None when no sample falls in the window
    """
    if p is None:
        p = settings.IMPACT_PERCENTILE
    in_window = [s for s in samples if since is None or s.sampled_at >= since]
    if not in_window:
        return None
    return ResourceStats(
        cpu_p95=percentile([s.cpu_millicores for s in in_window], p),
        memory_p95=percentile([s.memory_bytes for s in in_window], p),
    )


def compare_container(name, current, baseline):
    """
    :param current: ResourceStats or None
    :param baseline: ResourceStats or None
    """
    if current is None or baseline is None:
        return ContainerImpact(name, ImpactStatus.UNKNOWN, current=current, baseline=baseline)

    cpu_delta = delta_percent(current.cpu_p95, baseline.cpu_p95)
    memory_delta = delta_percent(current.memory_p95, baseline.memory_p95)
    score = mean([cpu_delta, memory_delta])
    return ContainerImpact(
        container_name=name,
        status=classify_impact(score),
        score=score,
        cpu_delta_percent=cpu_delta,
        memory_delta_percent=memory_delta,
        current=current,
        baseline=baseline,
    )


def summarize(container_impacts):
    score = mean([c.score for c in container_impacts])
    return Impact(
        status=classify_impact(score),
        score=score,
        degraded_count=sum(1 for c in container_impacts if c.status == ImpactStatus.DEGRADED),
        improved_count=sum(1 for c in container_impacts if c.status == ImpactStatus.IMPROVED),
        containers=list(container_impacts),
    )


def compare_snapshots(current, baseline, samples_by_container_id, since=None):
    """
    :param current: VersionSnapshot
    :param baseline: VersionSnapshot
    :param samples_by_container_id: {str(container id): [sample, ...]}
    """
    baseline_by_name = {c.name: c for c in baseline.containers}
    impacts = []
    for container in sorted(current.containers, key=lambda c: c.name):
        baseline_container = baseline_by_name.get(container.name)
        if baseline_container is None:
            continue
        impacts.append(compare_container(
            container.name,
            resource_stats(samples_by_container_id.get(str(container.id), []), since),
            resource_stats(samples_by_container_id.get(str(baseline_container.id), []), since),
        ))
    return summarize(impacts)


def fetch_samples(container_ids, since):
    from krt.models import ResourceSample

    samples = ResourceSample.objects.samples_by_container(container_ids, since)
    return {str(container_id): rows for container_id, rows in samples.items()}


class VersionImpactAnalyzer:
    """
    Read only; samples are queried again on every call.
    """

    def __init__(self, fetch=fetch_samples, now=timezone.now):
        self.fetch = fetch
        self.now = now

    def window_start(self, window=None):
        window = window or settings.IMPACT_DEFAULT_WINDOW
        try:
            duration = settings.IMPACT_WINDOWS[window]
        except KeyError:
            raise ValueError(f'Unknown window {window!r}, expected one of {", ".join(settings.IMPACT_WINDOWS)}') from None
        return self.now() - duration

    def compare(self, current, baseline, window=None):
        since = self.window_start(window)
        container_ids = {str(c.id) for c in current.containers} | {str(c.id) for c in baseline.containers}
        samples = self.fetch(sorted(container_ids), since)
        return compare_snapshots(current, baseline, samples, since)

    def analyze_deployment(self, group, window=None, current_version=None, baseline_version=None):
        """
        Compares two versions of a deployment, by default the latest one against
        the one before it. Returns None when there is nothing to compare with.
        """
        snapshots = version_snapshots(group)
        if not snapshots:
            return None

        if current_version is None:
            current = snapshots[0]
        else:
            current = find_snapshot(snapshots, current_version)

        if baseline_version is None:
            baseline = previous_snapshot(snapshots, current.version) if current else None
        else:
            baseline = find_snapshot(snapshots, baseline_version)

        if current is None or baseline is None:
            log.debug('Nothing to compare for deployment %s', group.name)
            return None
        return self.compare(current, baseline, window)

    def version_totals(self, group, window=None):
        """
        Sum of container p95 values per version snapshot, newest first.
        """
        snapshots = version_snapshots(group)
        since = self.window_start(window)
        container_ids = {str(c.id) for s in snapshots for c in s.containers}
        samples = self.fetch(sorted(container_ids), since)

        totals = []
        for snapshot in snapshots:
            stats = [resource_stats(samples.get(str(c.id), []), since) for c in snapshot.containers]
            stats = [s for s in stats if s is not None]
            totals.append(VersionTotal(
                version=snapshot.version,
                created_at=snapshot.created_at,
                cpu_p95_total=sum(s.cpu_p95 for s in stats),
                memory_p95_total=sum(s.memory_p95 for s in stats),
            ))
        return totals
