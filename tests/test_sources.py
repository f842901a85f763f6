from types import SimpleNamespace
from unittest import mock

import pytest
from kubernetes.client.rest import ApiException

from krt.collectors.pod_index import PodIndex, PodIndexEntry
from krt.collectors.sources import (
    AcquisitionError,
    MetricsAcquirer,
    MetricsUnavailable,
    UsageRow,
    acquire,
    fetch_via_cadvisor,
    fetch_via_metrics_api,
    fetch_via_node_summary,
)

from .conftest import NAMESPACE, make_kube_pod

WORKER_RUNTIME_ID = 'a' * 64


def make_v1(*node_names, pods=()):
    v1 = mock.Mock()
    v1.list_node.return_value = SimpleNamespace(items=[
        SimpleNamespace(metadata=SimpleNamespace(name=name)) for name in node_names
    ])
    v1.list_namespaced_pod.return_value = SimpleNamespace(items=list(pods))
    return v1


def make_api_client(responses):
    """
    :param responses: {(node, path): payload}
    """
    def call_api(resource_path, method, path_params=None, **kwargs):
        path = resource_path.replace('/api/v1/nodes/{node}/proxy/', '')
        return responses[(path_params['node'], path)], 200, {}

    api_client = mock.Mock()
    api_client.call_api.side_effect = call_api
    return api_client


def cadvisor_text(cpu_seconds, timestamp_ms):
    return '\n'.join([
        '# HELP container_cpu_usage_seconds_total Cumulative cpu time consumed in seconds.',
        '# TYPE container_cpu_usage_seconds_total counter',
        f'container_cpu_usage_seconds_total{{container="app",namespace="{NAMESPACE}",pod="web-1"}}'
        f' {cpu_seconds} {timestamp_ms}',
        f'container_cpu_usage_seconds_total{{container="POD",namespace="{NAMESPACE}",pod="web-1"}} 99 {timestamp_ms}',
        f'container_cpu_usage_seconds_total{{container="app",namespace="kube-system",pod="dns-1"}} 5 {timestamp_ms}',
        '# TYPE container_memory_working_set_bytes gauge',
        f'container_memory_working_set_bytes{{container="app",namespace="{NAMESPACE}",pod="web-1"}}'
        f' 1.048576e+08 {timestamp_ms}',
        f'container_memory_working_set_bytes{{container="",id="/kubepods/burstable/pod-uid/{WORKER_RUNTIME_ID}",'
        f'image="",name="",namespace="",pod=""}} 2048 {timestamp_ms}',
        f'container_memory_working_set_bytes{{container="gone",namespace="{NAMESPACE}",pod="deleted-1"}}'
        f' 4096 {timestamp_ms}',
        f'container_fs_reads_total{{container="app",namespace="{NAMESPACE}",pod="web-1"}} 7 {timestamp_ms}',
    ])


def test_metrics_api(make_context):
    custom_api = mock.Mock()
    custom_api.list_namespaced_custom_object.return_value = {
        'items': [
            {
                'metadata': {'name': 'web-1', 'namespace': NAMESPACE, 'uid': 'uid-from-metrics'},
                'containers': [{'name': 'app', 'usage': {'cpu': '250000000n', 'memory': '128Mi'}}],
            },
            {
                'metadata': {'name': 'worker-1', 'namespace': NAMESPACE},
                'containers': [{'name': 'worker', 'usage': {'cpu': '1', 'memory': '64Ki'}}],
            },
            {
                'metadata': {'name': 'unknown-1', 'namespace': NAMESPACE},
                'containers': [{'name': 'app', 'usage': {'cpu': '1', 'memory': '1Ki'}}],
            },
        ],
    }

    rows = fetch_via_metrics_api(make_context(custom_api=custom_api, request_timeout=3))

    custom_api.list_namespaced_custom_object.assert_called_once_with(
        'metrics.k8s.io', 'v1beta1', NAMESPACE, 'pods', _request_timeout=3)
    assert rows == [
        UsageRow('uid-from-metrics', 'web-1', 'app', '250000000n', '128Mi', 250, 128 * 1024 ** 2),
        UsageRow('uid-worker-1', 'worker-1', 'worker', '1', '64Ki', 1000, 64 * 1024),
    ]


def test_metrics_api_unparsable_usage_is_zero(make_context):
    custom_api = mock.Mock()
    custom_api.list_namespaced_custom_object.return_value = {
        'items': [{
            'metadata': {'name': 'web-1'},
            'containers': [{'name': 'app', 'usage': {'cpu': 'lots', 'memory': '12Qi'}}],
        }],
    }

    row, = fetch_via_metrics_api(make_context(custom_api=custom_api))

    assert (row.cpu_raw, row.cpu_millicores) == ('lots', 0)
    assert (row.memory_raw, row.memory_bytes) == ('12Qi', 0)


def test_cadvisor_rates_over_two_cycles(make_context, counters):
    v1 = make_v1('node-a')

    first = fetch_via_cadvisor(make_context(
        v1=v1, api_client=make_api_client({('node-a', 'metrics/cadvisor'): cadvisor_text(10, 1000)})))
    second = fetch_via_cadvisor(make_context(
        v1=v1, api_client=make_api_client({('node-a', 'metrics/cadvisor'): cadvisor_text(10.5, 2000)})))

    web = {row.container_name: row for row in first if row.pod_name == 'web-1'}
    assert set(web) == {'app'}
    assert web['app'].cpu_millicores == 0
    assert web['app'].memory_bytes == 104857600
    assert web['app'].memory_raw == '104857600B'

    app, = [row for row in second if row.pod_name == 'web-1']
    assert app.cpu_millicores == 500
    assert app.cpu_raw == '10.5s_total'
    assert app.pod_uid == 'uid-web-1'
    assert f'{NAMESPACE}/web-1/app' in counters


def test_cadvisor_resolves_runtime_id_and_skips_foreign_rows(make_context):
    ctx = make_context(
        v1=make_v1('node-a'),
        api_client=make_api_client({('node-a', 'metrics/cadvisor'): cadvisor_text(10, 1000)}),
    )

    rows = fetch_via_cadvisor(ctx)

    assert sorted((row.pod_name, row.container_name) for row in rows) == [
        ('web-1', 'app'),
        ('worker-1', 'worker'),
    ]
    worker, = [row for row in rows if row.pod_name == 'worker-1']
    assert worker == UsageRow('uid-worker-1', 'worker-1', 'worker', '0', '2048B', 0, 2048)


def test_cadvisor_skips_non_finite_values(make_context):
    text = '\n'.join([
        f'container_cpu_usage_seconds_total{{container="app",namespace="{NAMESPACE}",pod="web-1"}} 10 1000',
        f'container_memory_working_set_bytes{{container="app",namespace="{NAMESPACE}",pod="web-1"}} 2048 1000',
        f'container_cpu_usage_seconds_total{{container="worker",namespace="{NAMESPACE}",pod="worker-1"}} +Inf 1000',
        f'container_memory_working_set_bytes{{container="worker",namespace="{NAMESPACE}",pod="worker-1"}} NaN 1000',
    ])
    ctx = make_context(v1=make_v1('node-a'), api_client=make_api_client({('node-a', 'metrics/cadvisor'): text}))

    rows = fetch_via_cadvisor(ctx)

    assert rows == [UsageRow('uid-web-1', 'web-1', 'app', '10.0s_total', '2048B', 0, 2048)]


def test_cadvisor_forgets_counters_of_gone_pods(make_context, counters):
    v1 = make_v1('node-a')
    for i in range(5):
        pod_name = f'web-{i}'
        pod_index = PodIndex(by_name={f'{NAMESPACE}/{pod_name}': PodIndexEntry(f'uid-{pod_name}', 'node-a')})
        text = (f'container_cpu_usage_seconds_total{{container="app",namespace="{NAMESPACE}",pod="{pod_name}"}}'
                f' {i} {1000 * (i + 1)}\n')
        ctx = make_context(
            v1=v1,
            pod_index=pod_index,
            api_client=make_api_client({('node-a', 'metrics/cadvisor'): text}),
        )

        row, = fetch_via_cadvisor(ctx)
        assert row.pod_name == pod_name

    assert len(counters) == 1
    assert f'{NAMESPACE}/web-4/app' in counters


def test_cadvisor_without_tracked_metrics(make_context):
    ctx = make_context(
        v1=make_v1('node-a', 'node-b'),
        api_client=make_api_client({
            ('node-a', 'metrics/cadvisor'): 'container_fs_reads_total{pod="web-1"} 7\n',
            ('node-b', 'metrics/cadvisor'): '',
        }),
    )

    with pytest.raises(MetricsUnavailable):
        fetch_via_cadvisor(ctx)


def test_cadvisor_unexpected_response(make_context):
    ctx = make_context(
        v1=make_v1('node-a'),
        api_client=make_api_client({('node-a', 'metrics/cadvisor'): {'kind': 'Status'}}),
    )

    with pytest.raises(MetricsUnavailable):
        fetch_via_cadvisor(ctx)


def test_node_summary(make_context):
    summary = {
        'node': {'nodeName': 'node-a'},
        'pods': [
            {
                'podRef': {'name': 'web-1', 'namespace': NAMESPACE, 'uid': 'uid-summary'},
                'containers': [{
                    'name': 'app',
                    'cpu': {'usageNanoCores': 250_000_000},
                    'memory': {'workingSetBytes': 1024, 'usageBytes': 4096},
                }],
            },
            {
                'podRef': {'name': 'worker-1', 'namespace': NAMESPACE},
                'containers': [{'name': 'worker', 'cpu': {}, 'memory': {'usageBytes': 4096}}],
            },
            {
                'podRef': {'name': 'dns-1', 'namespace': 'kube-system', 'uid': 'uid-dns'},
                'containers': [{'name': 'dns', 'cpu': {'usageNanoCores': 1}, 'memory': {}}],
            },
        ],
    }
    ctx = make_context(v1=make_v1('node-a'), api_client=make_api_client({('node-a', 'stats/summary'): summary}))

    rows = fetch_via_node_summary(ctx)

    assert rows == [
        UsageRow('uid-summary', 'web-1', 'app', '250000000n', '1024B', 250, 1024),
        UsageRow('uid-worker-1', 'worker-1', 'worker', '0n', '4096B', 0, 4096),
    ]


def test_acquire_falls_back_in_order(make_context):
    calls = []

    def metrics_api(ctx):
        calls.append('metrics_api')
        raise ApiException(status=503, reason='Service Unavailable')

    def cadvisor(ctx):
        calls.append('cadvisor')
        return [UsageRow('uid-web-1', 'web-1', 'app', '0', '0B', 0, 0)]

    def node_summary(ctx):
        calls.append('node_summary')
        return []

    rows = acquire(make_context(), tiers=(metrics_api, cadvisor, node_summary))

    assert calls == ['metrics_api', 'cadvisor']
    assert len(rows) == 1


def test_acquire_empty_result_is_success(make_context):
    tiers = (lambda ctx: [], mock.Mock(side_effect=AssertionError('not reached')))
    assert acquire(make_context(), tiers=tiers) == []


def test_acquire_all_tiers_failing(make_context):
    def failing(ctx):
        raise MetricsUnavailable('nothing here')

    with pytest.raises(AcquisitionError):
        acquire(make_context(), tiers=(failing, failing, failing))


def test_metrics_acquirer_uses_node_summary_when_others_fail(counters):
    pods = [make_kube_pod('web-1', 'uid-web-1', containers=[('app', 'c' * 64)])]
    custom_api = mock.Mock()
    custom_api.list_namespaced_custom_object.side_effect = ApiException(status=404, reason='Not Found')
    summary = {
        'pods': [{
            'podRef': {'name': 'web-1', 'namespace': NAMESPACE},
            'containers': [{'name': 'app', 'cpu': {'usageNanoCores': 5_000_000}, 'memory': {'workingSetBytes': 10}}],
        }],
    }
    api_client = make_api_client({
        ('node-a', 'metrics/cadvisor'): '',
        ('node-a', 'stats/summary'): summary,
    })

    acquirer = MetricsAcquirer(
        NAMESPACE, counters,
        v1=make_v1('node-a', pods=pods), api_client=api_client, custom_api=custom_api,
    )

    assert acquirer.acquire() == [UsageRow('uid-web-1', 'web-1', 'app', '5000000n', '10B', 5, 10)]


def test_metrics_acquirer_builds_pod_index_before_metrics_api(counters):
    pods = [make_kube_pod('web-1', 'uid-web-1', containers=[('app', 'c' * 64)])]
    v1 = make_v1('node-a', pods=pods)
    custom_api = mock.Mock()
    custom_api.list_namespaced_custom_object.return_value = {
        'items': [{
            'metadata': {'name': 'web-1', 'namespace': NAMESPACE},
            'containers': [{'name': 'app', 'usage': {'cpu': '5m', 'memory': '1Ki'}}],
        }],
    }
    api_client = mock.Mock()

    acquirer = MetricsAcquirer(NAMESPACE, counters, v1=v1, api_client=api_client, custom_api=custom_api,
                               request_timeout=7)

    assert acquirer.acquire() == [UsageRow('uid-web-1', 'web-1', 'app', '5m', '1Ki', 5, 1024)]
    v1.list_namespaced_pod.assert_called_once_with(NAMESPACE, _request_timeout=7)
    v1.list_node.assert_not_called()
    api_client.call_api.assert_not_called()
