from django.core.management.base import BaseCommand

from krt.collectors.metrics import main


class Command(BaseCommand):
    help = 'Runs container resource sampler'

    def handle(self, *args, **options):
        main()
