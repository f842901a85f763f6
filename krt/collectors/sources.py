"""
Container usage acquisition.

Three sources are tried in order, the first one that completes without raising
wins:

1. metrics.k8s.io aggregated API, already instantaneous usage;
2. cAdvisor exposition scraped through each node proxy, CPU derived from the
   cumulative counter against the previous cycle;
3. kubelet stats summary through each node proxy.
"""

import time
import logging
from typing import NamedTuple

import kubernetes

from krt.exposition import iter_samples
from krt.kube import cpu_to_millicores, memory_to_bytes
from krt.utils import parse_cgroup_runtime_id
from krt.collectors.pod_index import build_pod_index

log = logging.getLogger(__name__)

CPU_METRIC = 'container_cpu_usage_seconds_total'
MEMORY_METRIC = 'container_memory_working_set_bytes'
TRACKED_METRICS = frozenset([CPU_METRIC, MEMORY_METRIC])

# pause container of the pod sandbox
SANDBOX_CONTAINER = 'POD'


class AcquisitionError(Exception):
    pass


class MetricsUnavailable(Exception):
    pass


class UsageRow(NamedTuple):
    pod_uid: str
    pod_name: str
    container_name: str
    cpu_raw: str
    memory_raw: str
    cpu_millicores: int
    memory_bytes: int


class AcquisitionContext:
    def __init__(self, namespace, pod_index, counters, v1=None, api_client=None, custom_api=None,
                 request_timeout=None, now_ms=None):
        self.namespace = namespace
        self.pod_index = pod_index
        self.counters = counters
        self.v1 = v1
        self.api_client = api_client
        self.custom_api = custom_api
        self.request_timeout = request_timeout
        self.now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

    def list_node_names(self):
        nodes = self.v1.list_node(_request_timeout=self.request_timeout)
        return [node.metadata.name for node in nodes.items or [] if node.metadata.name]

    def node_proxy_get(self, node_name, path):
        response = self.api_client.call_api(
            '/api/v1/nodes/{node}/proxy/' + path, 'GET',
            path_params={
                'node': node_name,
            },
            auth_settings=['BearerToken'],
            response_type='object',
            _request_timeout=self.request_timeout,
        )
        return response[0]


def fetch_via_metrics_api(ctx):
    metrics_list = ctx.custom_api.list_namespaced_custom_object(
        'metrics.k8s.io', 'v1beta1', ctx.namespace, 'pods',
        _request_timeout=ctx.request_timeout,
    )
    rows = []

    for pod in metrics_list.get('items') or []:
        metadata = pod.get('metadata') or {}
        pod_name = metadata.get('name')
        if not pod_name:
            continue
        pod_uid = metadata.get('uid') or ctx.pod_index.uid(metadata.get('namespace') or ctx.namespace, pod_name)
        if not pod_uid:
            log.debug('No uid for pod %s/%s', ctx.namespace, pod_name)
            continue

        for container in pod.get('containers') or []:
            usage = container.get('usage') or {}
            cpu_raw = usage.get('cpu') or '0'
            memory_raw = usage.get('memory') or '0'
            rows.append(UsageRow(
                pod_uid=pod_uid,
                pod_name=pod_name,
                container_name=container['name'],
                cpu_raw=cpu_raw,
                memory_raw=memory_raw,
                cpu_millicores=cpu_to_millicores(cpu_raw),
                memory_bytes=memory_to_bytes(memory_raw),
            ))

    return rows


def fetch_via_cadvisor(ctx):
    cpu_totals = {}
    memory_by_container = {}
    found_metrics = False

    for node_name in ctx.list_node_names():
        text = ctx.node_proxy_get(node_name, 'metrics/cadvisor')
        if not isinstance(text, str):
            raise MetricsUnavailable(f'Unexpected cadvisor response from node {node_name}')

        for sample in iter_samples(text, ctx.now_ms, metric_names=TRACKED_METRICS):
            found_metrics = True
            key = resolve_container_key(ctx, sample.labels)
            if key is None:
                continue
            if sample.metric == CPU_METRIC:
                cpu_totals[key] = (sample.value, sample.timestamp)
            else:
                memory_by_container[key] = sample.value

    if not found_metrics:
        raise MetricsUnavailable(f'Neither {CPU_METRIC} nor {MEMORY_METRIC} exposed by any node')

    rows = []
    observed = set()
    for key in sorted(cpu_totals.keys() | memory_by_container.keys()):
        namespace, pod_name, container_name = key
        pod_uid = ctx.pod_index.uid(namespace, pod_name)
        if not pod_uid:
            log.debug('Pod %s/%s not in index', namespace, pod_name)
            continue

        cpu = cpu_totals.get(key)
        if cpu is None:
            cpu_raw = '0'
            cpu_millicores = 0
        else:
            total_seconds, timestamp_ms = cpu
            cpu_raw = f'{total_seconds}s_total'
            counter_key = '/'.join(key)
            cpu_millicores = ctx.counters.observe(counter_key, total_seconds, timestamp_ms)
            observed.add(counter_key)

        memory_bytes = max(0, round(memory_by_container.get(key, 0)))
        rows.append(UsageRow(
            pod_uid=pod_uid,
            pod_name=pod_name,
            container_name=container_name,
            cpu_raw=cpu_raw,
            memory_raw=f'{memory_bytes}B',
            cpu_millicores=cpu_millicores,
            memory_bytes=memory_bytes,
        ))

    ctx.counters.retain(observed)
    return rows


def resolve_container_key(ctx, labels):
    """
    :return: (namespace, pod_name, container_name) or None when the sample does
        not belong to a container of the target namespace
    """
    namespace = labels.get('namespace') or labels.get('container_label_io_kubernetes_pod_namespace')
    pod_name = labels.get('pod') or labels.get('pod_name')
    container_name = labels.get('container') or labels.get('container_name')

    if container_name == SANDBOX_CONTAINER:
        return None

    if not container_name:
        resolved = ctx.pod_index.resolve_runtime_id(parse_cgroup_runtime_id(labels.get('id')))
        if resolved is not None:
            namespace = resolved.namespace
            pod_name = resolved.pod_name
            container_name = resolved.container_name

    if not namespace or namespace != ctx.namespace or not pod_name or not container_name:
        return None
    return namespace, pod_name, container_name


def fetch_via_node_summary(ctx):
    rows = []

    for node_name in ctx.list_node_names():
        summary = ctx.node_proxy_get(node_name, 'stats/summary')
        if not isinstance(summary, dict):
            raise MetricsUnavailable(f'Unexpected stats summary response from node {node_name}')

        for pod in summary.get('pods') or []:
            pod_ref = pod.get('podRef') or {}
            namespace = pod_ref.get('namespace') or ctx.namespace
            if namespace != ctx.namespace:
                continue
            pod_name = pod_ref.get('name')
            if not pod_name:
                continue
            pod_uid = pod_ref.get('uid') or ctx.pod_index.uid(namespace, pod_name)
            if not pod_uid:
                continue

            for container in pod.get('containers') or []:
                cpu = container.get('cpu') or {}
                memory = container.get('memory') or {}
                nano_cores = cpu.get('usageNanoCores') or 0
                memory_bytes = memory.get('workingSetBytes')
                if memory_bytes is None:
                    memory_bytes = memory.get('usageBytes') or 0
                rows.append(UsageRow(
                    pod_uid=pod_uid,
                    pod_name=pod_name,
                    container_name=container['name'],
                    cpu_raw=f'{nano_cores}n',
                    memory_raw=f'{memory_bytes}B',
                    cpu_millicores=max(0, round(nano_cores / 1_000_000)),
                    memory_bytes=max(0, round(memory_bytes)),
                ))

    return rows


TIERS = (
    fetch_via_metrics_api,
    fetch_via_cadvisor,
    fetch_via_node_summary,
)


def acquire(ctx, tiers=TIERS):
    for tier in tiers:
        try:
            rows = tier(ctx)
        except Exception as err:
            log.warning('%s failed, falling back: %s', _tier_name(tier), err)
            continue
        log.info('Acquired %d container rows via %s', len(rows), _tier_name(tier))
        return rows
    raise AcquisitionError('All metric sources failed')


class MetricsAcquirer:
    """
    Builds the pod index and runs the fallback chain once per call. The counter
    store is kept between calls.
    """

    def __init__(self, namespace, counters, v1=None, api_client=None, custom_api=None,
                 request_timeout=None, tiers=TIERS):
        self.namespace = namespace
        self.counters = counters
        self.api_client = api_client or kubernetes.client.ApiClient()
        self.v1 = v1 or kubernetes.client.CoreV1Api(self.api_client)
        self.custom_api = custom_api or kubernetes.client.CustomObjectsApi(self.api_client)
        self.request_timeout = request_timeout
        self.tiers = tiers

    def acquire(self):
        pod_index = build_pod_index(self.v1, self.namespace, self.request_timeout)
        ctx = AcquisitionContext(
            namespace=self.namespace,
            pod_index=pod_index,
            counters=self.counters,
            v1=self.v1,
            api_client=self.api_client,
            custom_api=self.custom_api,
            request_timeout=self.request_timeout,
        )
        return acquire(ctx, self.tiers)


def _tier_name(tier):
    return getattr(tier, '__name__', repr(tier))
