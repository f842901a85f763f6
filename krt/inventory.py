"""
Pod, container and log records as stored by the inventory sync.

The sampler does not produce these; the health and version impact code consumes
them. `pod_from_kube` builds them from kubernetes API objects for callers that
read the cluster directly.
"""

import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from krt.kube import get_container_resources
from krt.utils import container_uuid

POD_STATUSES = ('Running', 'Pending', 'Error', 'OOMKilled', 'CrashLoopBackOff', 'Terminated', 'Unknown')
CONTAINER_STATUSES = ('Running', 'Waiting', 'Terminated')

PHASE_STATUSES = {
    'Running': 'Running',
    'Pending': 'Pending',
    'Succeeded': 'Terminated',
    'Failed': 'Error',
}


@dataclass(frozen=True)
class LastState:
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Container:
    id: str
    name: str
    image: str = ''
    status: str = 'Waiting'
    ready: bool = False
    restart_count: int = 0
    started_at: Optional[datetime.datetime] = None
    last_state: Optional[LastState] = None
    cpu_request_millicores: Optional[int] = None
    cpu_limit_millicores: Optional[int] = None
    memory_request_bytes: Optional[int] = None
    memory_limit_bytes: Optional[int] = None

    @property
    def last_state_reason(self):
        return self.last_state.reason if self.last_state else None


@dataclass(frozen=True)
class Pod:
    id: str
    name: str
    namespace: str
    status: str
    created_at: datetime.datetime
    node_name: Optional[str] = None
    pod_ip: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    containers: List[Container] = field(default_factory=list)

    @property
    def restarts(self):
        return sum(c.restart_count for c in self.containers)


@dataclass(frozen=True)
class LogEntry:
    container_id: str
    message: str
    level: str = 'info'
    timestamp: Optional[datetime.datetime] = None


def infer_log_level(message):
    m = message.lower()
    if 'error' in m or 'exception' in m or 'fatal' in m:
        return 'error'
    if 'warn' in m:
        return 'warn'
    return 'info'


def map_pod_status(phase, container_statuses):
    for cs in container_statuses or []:
        waiting = cs.state.waiting if cs.state else None
        terminated = cs.state.terminated if cs.state else None
        last_terminated = cs.last_state.terminated if cs.last_state else None
        if waiting and waiting.reason == 'CrashLoopBackOff':
            return 'CrashLoopBackOff'
        if waiting and waiting.reason == 'OOMKilled':
            return 'OOMKilled'
        if terminated and terminated.reason == 'OOMKilled':
            return 'OOMKilled'
        if terminated and terminated.reason == 'Error':
            return 'Error'
        if last_terminated and last_terminated.reason == 'OOMKilled':
            return 'OOMKilled'
    return PHASE_STATUSES.get(phase, 'Unknown')


def map_container_status(state):
    if state is None:
        return 'Waiting'
    if state.running:
        return 'Running'
    if state.terminated:
        return 'Terminated'
    return 'Waiting'


def _last_state(cs):
    state = cs.state
    last_terminated = cs.last_state.terminated if cs.last_state else None
    waiting = state.waiting if state else None
    terminated = state.terminated if state else None

    reason = (last_terminated and last_terminated.reason) or (waiting and waiting.reason) \
        or (terminated and terminated.reason) or None
    if last_terminated and last_terminated.exit_code is not None:
        exit_code = last_terminated.exit_code
    else:
        exit_code = terminated.exit_code if terminated else None
    message = (last_terminated and last_terminated.message) or (waiting and waiting.message) \
        or (terminated and terminated.message) or None

    if reason is None and exit_code is None and message is None:
        return None
    return LastState(reason=reason, exit_code=exit_code, message=message)


def pod_from_kube(pod):
    """
    :param pod: kubernetes.client.V1Pod
    :return: Pod
    """
    uid = pod.metadata.uid
    statuses = (pod.status.container_statuses or []) if pod.status else []
    specs = {c.name: c for c in (pod.spec.containers if pod.spec else None) or []}

    containers = []
    for cs in statuses:
        running = cs.state.running if cs.state else None
        resources = get_container_resources(specs[cs.name]) if cs.name in specs else {}
        containers.append(Container(
            id=str(container_uuid(uid, cs.name)),
            name=cs.name,
            image=cs.image or 'unknown',
            status=map_container_status(cs.state),
            ready=bool(cs.ready),
            restart_count=cs.restart_count or 0,
            started_at=running.started_at if running else None,
            last_state=_last_state(cs),
            **resources,
        ))

    return Pod(
        id=uid,
        name=pod.metadata.name or 'unknown',
        namespace=pod.metadata.namespace or 'default',
        status=map_pod_status(pod.status.phase if pod.status else None, statuses),
        created_at=pod.metadata.creation_timestamp or datetime.datetime.now(datetime.timezone.utc),
        node_name=(pod.spec.node_name if pod.spec else None) or 'unassigned',
        pod_ip=pod.status.pod_ip if pod.status else None,
        labels=dict(pod.metadata.labels or {}),
        containers=containers,
    )
