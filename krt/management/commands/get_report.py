import kubernetes
from django.conf import settings
from django.core.management.base import BaseCommand

from krt import kube_config, models
from krt.kube import usage_percent
from krt.health import enrich_pod, preferred_container, sort_pods_by_health
from krt.impact import VersionImpactAnalyzer
from krt.inventory import pod_from_kube
from krt.deployments import group_pods_by_deployment

MEBIBYTE = 1024 * 1024


class Command(BaseCommand):
    help = 'Prints pod triage and version impact per deployment'

    def add_arguments(self, parser):
        parser.add_argument('--namespace', default=settings.TARGET_NAMESPACE)
        parser.add_argument('--window', default=settings.IMPACT_DEFAULT_WINDOW, choices=list(settings.IMPACT_WINDOWS))
        parser.add_argument('--deployment', help='Only this deployment')

    def handle(self, *args, **options):
        kube_config.init()
        v1 = kubernetes.client.CoreV1Api()
        pod_list = v1.list_namespaced_pod(options['namespace'], _request_timeout=settings.KUBE_REQUEST_TIMEOUT)

        pods = [enrich_pod(pod_from_kube(pod)) for pod in pod_list.items]
        groups = group_pods_by_deployment(pods)
        if options['deployment']:
            groups = [g for g in groups if g.name == options['deployment']]

        self.stdout.write('Pods:')
        for pod in sort_pods_by_health(p for g in groups for p in g.pods):
            self.print_pod(pod)

        analyzer = VersionImpactAnalyzer()
        for group in groups:
            self.stdout.write('')
            self.stdout.write(f'Deployment {group.name}: {group.health.value}'
                              f' (healthy {group.health_summary["healthy"]},'
                              f' warning {group.health_summary["warning"]},'
                              f' error {group.health_summary["error"]})')

            for total in analyzer.version_totals(group, options['window']):
                self.stdout.write(f'  {total.version}: p95 {round(total.cpu_p95_total)}m,'
                                  f' {total.memory_p95_total / MEBIBYTE:.1f} Mi')

            impact = analyzer.analyze_deployment(group, options['window'])
            if impact is None:
                self.stdout.write('  impact: no baseline version')
                continue

            msg = f'  impact: {impact.status.value}'
            if impact.score is not None:
                msg += f' ({impact.score:+.1f}%)'
            msg += f', degraded: {impact.degraded_count}, improved: {impact.improved_count}'
            self.stdout.write(msg)
            for c in impact.containers:
                self.stdout.write(f'    {c.container_name}: {c.status.value}'
                                  f' cpu {_format_delta(c.cpu_delta_percent)}'
                                  f' memory {_format_delta(c.memory_delta_percent)}')

    def print_pod(self, pod):
        msg = f'  [{pod.health.value}] {pod.name} score:{pod.attention_score}'
        if pod.attention_reason:
            msg += f' ({pod.attention_reason})'
        if pod.version:
            msg += f' v{pod.version}'

        container = preferred_container(pod.containers)
        if container is not None:
            latest = list(models.ResourceSample.objects.for_container(container.id).recent(1))
            if latest:
                sample = latest[0]
                msg += f' {container.name}: {sample.cpu_millicores}m'
                cpu_percent = usage_percent(sample.cpu_millicores, container.cpu_limit_millicores)
                if cpu_percent is not None:
                    msg += f' ({cpu_percent:.0f}% of limit)'
                msg += f', {sample.memory_bytes / MEBIBYTE:.1f} Mi'
                memory_percent = usage_percent(sample.memory_bytes, container.memory_limit_bytes)
                if memory_percent is not None:
                    msg += f' ({memory_percent:.0f}% of limit)'
        self.stdout.write(msg)


def _format_delta(delta):
    if delta is None:
        return 'n/a'
    return f'{delta:+.1f}%'
