import datetime

from django.conf import settings
from django.utils import timezone
from django.core.management.base import BaseCommand

from krt import models


class Command(BaseCommand):
    help = 'Removes resource samples older than the retention period'

    def add_arguments(self, parser):
        parser.add_argument('--days', type=int, help='Override MAX_RETENTION_DAYS')

    def handle(self, *args, **options):
        if options['days'] is not None:
            delete_before = timezone.now() - datetime.timedelta(days=options['days'])
        else:
            delete_before = timezone.now() - settings.MAX_RETENTION

        deleted = delete(models.ResourceSample.objects.filter(sampled_at__lt=delete_before))
        self.stdout.write(f'Deleted {deleted} resource samples')


def delete(qs):
    total, per_model = qs.delete()
    return per_model.get(qs.model._meta.label, 0)
