from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.conf import settings

from krt.health import HEALTH_PRIORITY, Health, created_timestamp
from krt.labels import infer_deployment_name

UNKNOWN_VERSION = 'unknown'


@dataclass(frozen=True)
class DeploymentGroup:
    name: str
    pods: List = field(default_factory=list)
    health: Health = Health.HEALTHY
    attention_score: int = 0
    health_summary: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class VersionSnapshot:
    version: str
    pod: object

    @property
    def pod_name(self):
        return self.pod.name

    @property
    def created_at(self):
        return self.pod.created_at

    @property
    def containers(self):
        return self.pod.containers


def _created_key(pod):
    return created_timestamp(pod.created_at)


def group_pods_by_deployment(pods):
    """
    :param pods: [krt.health.PodWithHealth, ...]
    :return: [DeploymentGroup, ...], most urgent first
    """
    pods_by_name = defaultdict(list)
    for pod in pods:
        pods_by_name[infer_deployment_name(pod.name, pod.labels)].append(pod)

    groups = []
    for name, group_pods in pods_by_name.items():
        group_pods = sorted(group_pods, key=_created_key, reverse=True)
        summary = {h.value: 0 for h in Health}
        for pod in group_pods:
            summary[pod.health.value] += 1
        groups.append(DeploymentGroup(
            name=name,
            pods=group_pods,
            health=min((p.health for p in group_pods), key=HEALTH_PRIORITY.get),
            attention_score=max(p.attention_score for p in group_pods),
            health_summary=summary,
        ))

    return sorted(groups, key=lambda g: (HEALTH_PRIORITY[g.health], -g.attention_score, g.name))


def version_snapshots(group, limit=None):
    """
    One snapshot per distinct version, represented by the most recent pod of
    that version, newest first.
    """
    if limit is None:
        limit = settings.MAX_VERSION_SNAPSHOTS
    by_version = {}
    for pod in sorted(group.pods, key=_created_key, reverse=True):
        version = pod.version or UNKNOWN_VERSION
        if version not in by_version:
            by_version[version] = VersionSnapshot(version=version, pod=pod)
    snapshots = sorted(by_version.values(), key=lambda s: _created_key(s.pod), reverse=True)
    return snapshots[:limit]


def find_snapshot(snapshots, version) -> Optional[VersionSnapshot]:
    for snapshot in snapshots:
        if snapshot.version == version:
            return snapshot
    return None


def previous_snapshot(snapshots, version) -> Optional[VersionSnapshot]:
    for idx, snapshot in enumerate(snapshots):
        if snapshot.version == version:
            if idx + 1 < len(snapshots):
                return snapshots[idx + 1]
            return None
    return None
