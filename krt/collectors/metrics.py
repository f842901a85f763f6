import time
import logging

from django.conf import settings
from django.db import DatabaseError, close_old_connections, transaction
from django.utils import timezone

from krt import kube_config, models
from krt.db import ensure_schema
from krt.counters import CounterStore
from krt.signals import install_shutdown_signal_handlers
from krt.utils import container_uuid
from krt.collectors.sources import AcquisitionError, MetricsAcquirer

log = logging.getLogger(__name__)


def main():
    install_shutdown_signal_handlers()
    kube_config.init()

    acquirer = MetricsAcquirer(
        settings.TARGET_NAMESPACE,
        CounterStore(),
        request_timeout=settings.KUBE_REQUEST_TIMEOUT,
    )
    sampler = Sampler(acquirer, settings.TARGET_NAMESPACE, settings.SAMPLE_INTERVAL)
    sampler.run()


class Sampler:
    def __init__(self, acquirer, namespace, interval, sleep=time.sleep):
        self.acquirer = acquirer
        self.namespace = namespace
        self.interval = interval
        self.sleep = sleep
        self.schema_ok = False
        self.failed_cycles = 0

    def run(self):
        log.info('Resource sampler started, namespace=%s interval=%ds',
                 self.namespace, self.interval.total_seconds())
        while True:
            self.run_cycle()

    def run_cycle(self):
        start = timezone.now()
        close_old_connections()
        try:
            count = self.collect()
        except AcquisitionError:
            self.failed_cycles += 1
            log.error('All metric sources failed, skipping cycle')
        except DatabaseError:
            self.failed_cycles += 1
            self.schema_ok = False
            log.exception('Failed to store samples, cycle rolled back')
        except Exception:
            self.failed_cycles += 1
            log.exception('Resource collection failed')
        else:
            log.info('Collected %d container samples', count)

        elapsed = timezone.now() - start
        to_wait_seconds = max(0, (self.interval - elapsed).total_seconds())
        if to_wait_seconds > 0:
            log.debug('Waiting %.1f seconds for next collect cycle', to_wait_seconds)
            self.sleep(to_wait_seconds)

    def collect(self):
        if not self.schema_ok:
            ensure_schema()
            self.schema_ok = True
        rows = self.acquirer.acquire()
        return self.store(rows)

    def store(self, rows, sampled_at=None):
        if sampled_at is None:
            sampled_at = timezone.now()
        samples = [
            models.ResourceSample(
                sampled_at=sampled_at,
                namespace=self.namespace,
                pod_uid=row.pod_uid,
                pod_name=row.pod_name,
                container_name=row.container_name,
                container_id=container_uuid(row.pod_uid, row.container_name),
                cpu_raw=row.cpu_raw,
                memory_raw=row.memory_raw,
                cpu_millicores=row.cpu_millicores,
                memory_bytes=row.memory_bytes,
            )
            for row in rows
        ]
        with transaction.atomic():
            for sample in samples:
                sample.save(force_insert=True)
        return len(samples)
