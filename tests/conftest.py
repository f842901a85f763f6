import datetime
from types import SimpleNamespace

import pytest

from krt.counters import CounterStore
from krt.inventory import Container, LastState, Pod
from krt.collectors.pod_index import PodIndex, PodIndexEntry, RuntimeContainer
from krt.collectors.sources import AcquisitionContext

NAMESPACE = 'shop'
T0 = datetime.datetime(2026, 10, 1, 12, 0, tzinfo=datetime.timezone.utc)


def make_kube_pod(name, uid, namespace=NAMESPACE, node='node-a', containers=(), phase='Running',
                  labels=None, created_at=T0):
    """
    :param containers: [(name, runtime container id), ...]
    """
    statuses = [
        SimpleNamespace(
            name=container_name,
            container_id=f'containerd://{runtime_id}' if runtime_id else None,
            image=f'registry.local/{container_name}:1',
            ready=True,
            restart_count=0,
            state=SimpleNamespace(running=SimpleNamespace(started_at=created_at), waiting=None, terminated=None),
            last_state=SimpleNamespace(terminated=None),
        )
        for container_name, runtime_id in containers
    ]
    specs = [SimpleNamespace(name=container_name, resources=None) for container_name, _ in containers]
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            namespace=namespace,
            uid=uid,
            labels=labels or {},
            creation_timestamp=created_at,
        ),
        spec=SimpleNamespace(node_name=node, containers=specs),
        status=SimpleNamespace(
            phase=phase,
            pod_ip='10.0.0.1',
            container_statuses=statuses,
            init_container_statuses=None,
            ephemeral_container_statuses=None,
        ),
    )


def make_container(name='app', status='Running', ready=True, restart_count=0, reason=None, message=None,
                   container_id=None, **kwargs):
    last_state = LastState(reason=reason, message=message) if reason or message else None
    return Container(
        id=container_id or f'{name}-id',
        name=name,
        status=status,
        ready=ready,
        restart_count=restart_count,
        last_state=last_state,
        **kwargs,
    )


def make_pod(name='web-6d9f7c8b4d-x2k9p', status='Running', containers=None, labels=None, created_at=T0,
             pod_id=None):
    return Pod(
        id=pod_id or f'{name}-uid',
        name=name,
        namespace=NAMESPACE,
        status=status,
        created_at=created_at,
        labels=labels or {},
        containers=containers if containers is not None else [make_container()],
    )


@pytest.fixture
def pod_index():
    return PodIndex(
        by_name={
            f'{NAMESPACE}/web-1': PodIndexEntry(uid='uid-web-1', node_name='node-a'),
            f'{NAMESPACE}/worker-1': PodIndexEntry(uid='uid-worker-1', node_name='node-b'),
        },
        by_runtime_id={
            'a' * 64: RuntimeContainer(NAMESPACE, 'worker-1', 'uid-worker-1', 'worker'),
        },
    )


@pytest.fixture
def counters():
    return CounterStore()


@pytest.fixture
def make_context(pod_index, counters):
    def make(**kwargs):
        kwargs.setdefault('namespace', NAMESPACE)
        kwargs.setdefault('pod_index', pod_index)
        kwargs.setdefault('counters', counters)
        kwargs.setdefault('now_ms', 5_000)
        return AcquisitionContext(**kwargs)
    return make
