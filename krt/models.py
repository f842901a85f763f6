import uuid
from collections import defaultdict

from django.db import models
from django.conf import settings
from django.utils import timezone


class ResourceSampleQuerySet(models.QuerySet):
    def for_container(self, container_id):
        return self.filter(container_id=container_id)

    def since(self, since):
        if since is None:
            return self
        return self.filter(sampled_at__gte=since)

    def recent(self, limit=None):
        if limit is None:
            limit = settings.SAMPLES_QUERY_LIMIT
        return self.order_by('-sampled_at')[:limit]

    def samples_by_container(self, container_ids, since=None):
        """
        :return: {container_id: [ResourceSample, ...]} ordered by sampled_at
        """
        qs = self.filter(container_id__in=list(container_ids)).since(since).order_by('sampled_at')
        result = defaultdict(list)
        for sample in qs:
            result[sample.container_id].append(sample)
        return result


class ResourceSample(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sampled_at = models.DateTimeField(default=timezone.now)
    namespace = models.TextField()
    pod_uid = models.TextField()
    pod_name = models.TextField()
    container_name = models.TextField()
    container_id = models.UUIDField()
    cpu_raw = models.TextField()
    memory_raw = models.TextField()
    cpu_millicores = models.PositiveIntegerField()
    memory_bytes = models.PositiveBigIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    objects = ResourceSampleQuerySet.as_manager()

    class Meta:
        db_table = 'container_resource_samples'
        indexes = [
            models.Index(fields=['pod_uid'], name='crs_pod_uid_idx'),
            models.Index(fields=['container_id'], name='crs_container_id_idx'),
            models.Index(fields=['-sampled_at'], name='crs_sampled_at_idx'),
            models.Index(fields=['container_id', '-sampled_at'], name='crs_container_sampled_idx'),
        ]

    def __str__(self):
        return f'{self.namespace}/{self.pod_name} {self.container_name}: {self.cpu_millicores}m, {self.memory_bytes} B'
