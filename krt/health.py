"""
Container severity and pod health classification for triage.

Severity rules are evaluated top to bottom, the first matching rule wins.
"""

import enum
import datetime
from dataclasses import dataclass
from typing import Optional

from krt.labels import extract_version


class Severity(enum.Enum):
    HEALTHY = 'healthy'
    INITIALIZING = 'initializing'
    WARNING = 'warning'
    ERROR = 'error'


class Health(enum.Enum):
    HEALTHY = 'healthy'
    WARNING = 'warning'
    ERROR = 'error'


HEALTH_PRIORITY = {
    Health.ERROR: 0,
    Health.WARNING: 1,
    Health.HEALTHY: 2,
}

FATAL_REASONS = frozenset([
    'CrashLoopBackOff',
    'OOMKilled',
    'Error',
    'ImagePullBackOff',
    'ErrImagePull',
    'CreateContainerConfigError',
    'InvalidImageName',
    'RunContainerError',
])
INITIALIZING_REASONS = frozenset(['ContainerCreating', 'PodInitializing'])
ERROR_POD_STATUSES = frozenset(['Error', 'OOMKilled', 'CrashLoopBackOff'])

ERROR_RESTARTS = 5
MAX_WARNING_RESTARTS = 10
ERROR_POD_SCORE = 200
LOG_ERROR_SCORE = 60
MIN_WARNING_SCORE = 35
INITIALIZING_SCORE = 20

SIDECAR_NAMES = frozenset([
    'istio-proxy',
    'istio-init',
    'linkerd-proxy',
    'linkerd-init',
    'envoy',
    'vault-agent',
    'vault-agent-init',
    'cloud-sql-proxy',
    'fluent-bit',
    'fluentd',
])


@dataclass(frozen=True)
class ContainerSeverity:
    severity: Severity
    label: str
    score: int
    details: Optional[str] = None


@dataclass(frozen=True)
class PodHealth:
    health: Health
    attention_score: int
    attention_reason: Optional[str] = None


@dataclass(frozen=True)
class PodWithHealth:
    pod: object
    health: Health
    attention_score: int
    attention_reason: Optional[str]
    version: Optional[str]
    has_log_errors: bool

    @property
    def id(self):
        return self.pod.id

    @property
    def name(self):
        return self.pod.name

    @property
    def labels(self):
        return self.pod.labels

    @property
    def containers(self):
        return self.pod.containers

    @property
    def created_at(self):
        return self.pod.created_at


def _details(container):
    return container.last_state.message if container.last_state else None


def _error_rule(container):
    reason = container.last_state_reason
    score = 100 + container.restart_count
    if container.status == 'Terminated':
        return ContainerSeverity(Severity.ERROR, reason or 'Terminated', score, _details(container))
    if reason in FATAL_REASONS:
        return ContainerSeverity(Severity.ERROR, reason, score, _details(container))
    if container.restart_count >= ERROR_RESTARTS:
        return ContainerSeverity(Severity.ERROR, f'{container.restart_count} restarts', score, _details(container))
    return None


def _initializing_rule(container):
    if container.status != 'Waiting':
        return None
    reason = container.last_state_reason or ''
    if reason in INITIALIZING_REASONS or reason.startswith('Init:'):
        return ContainerSeverity(Severity.INITIALIZING, reason, INITIALIZING_SCORE)
    return None


def _warning_rule(container):
    score = 40 + min(container.restart_count, MAX_WARNING_RESTARTS)
    if container.status == 'Waiting':
        return ContainerSeverity(Severity.WARNING, container.last_state_reason or 'Waiting', score,
                                 _details(container))
    if not container.ready:
        return ContainerSeverity(Severity.WARNING, 'Not ready', score, _details(container))
    if container.restart_count > 0:
        return ContainerSeverity(Severity.WARNING, f'{container.restart_count} restarts', score,
                                 _details(container))
    return None


def _healthy_rule(container):
    return ContainerSeverity(Severity.HEALTHY, 'Healthy', 0)


SEVERITY_RULES = (
    _error_rule,
    _initializing_rule,
    _warning_rule,
    _healthy_rule,
)


def classify_severity(container):
    for rule in SEVERITY_RULES:
        result = rule(container)
        if result is not None:
            return result
    raise AssertionError('no severity rule matched')


def has_error_logs(container_id, container_logs):
    return any(entry.level == 'error' for entry in container_logs.get(container_id) or [])


def compute_pod_health(pod, container_logs=None):
    """
    :param pod: krt.inventory.Pod
    :param container_logs: {container_id: [LogEntry, ...]}
    :return: PodHealth
    """
    container_logs = container_logs or {}

    if pod.status in ERROR_POD_STATUSES:
        return PodHealth(Health.ERROR, ERROR_POD_SCORE, pod.status)

    worst = max(
        (classify_severity(c) for c in pod.containers),
        key=lambda s: s.score,
        default=ContainerSeverity(Severity.HEALTHY, 'Healthy', 0),
    )

    if worst.severity == Severity.ERROR:
        return PodHealth(Health.ERROR, worst.score, worst.label)

    if any(has_error_logs(c.id, container_logs) for c in pod.containers):
        return PodHealth(Health.WARNING, LOG_ERROR_SCORE, 'Error logs detected')

    if pod.status == 'Pending' or worst.severity == Severity.WARNING:
        reason = worst.label if worst.severity == Severity.WARNING else 'Pending'
        return PodHealth(Health.WARNING, max(worst.score, MIN_WARNING_SCORE), reason)

    if worst.severity == Severity.INITIALIZING:
        return PodHealth(Health.WARNING, worst.score, worst.label)

    return PodHealth(Health.HEALTHY, 0)


def enrich_pod(pod, container_logs=None):
    container_logs = container_logs or {}
    health = compute_pod_health(pod, container_logs)
    return PodWithHealth(
        pod=pod,
        health=health.health,
        attention_score=health.attention_score,
        attention_reason=health.attention_reason,
        version=extract_version(pod.labels),
        has_log_errors=any(has_error_logs(c.id, container_logs) for c in pod.containers),
    )


def created_timestamp(dt):
    if dt is None:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp()


def sort_pods_by_health(pods):
    """
    Errors first, then warnings, then healthy; within the same health the higher
    attention score first, then the most recent pod.
    """
    return sorted(pods, key=lambda p: (
        HEALTH_PRIORITY[p.health],
        -p.attention_score,
        -created_timestamp(p.created_at),
    ))


def is_sidecar_container(container):
    name = container.name
    return name in SIDECAR_NAMES or name.endswith('-sidecar') or name.endswith('-proxy')


def preferred_container(containers):
    """
    The container to show first for a pod: the most severe application container,
    sidecars only when there is nothing else.
    """
    if not containers:
        return None
    app_containers = [c for c in containers if not is_sidecar_container(c)]
    candidates = app_containers or containers
    return min(candidates, key=lambda c: (-(classify_severity(c).score * 100 + c.restart_count), c.name))
