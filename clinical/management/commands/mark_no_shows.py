import logging

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from clinical.errors import StateConflict
from clinical.services.appointments import mark_no_show, overdue_appointments

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Mark scheduled/confirmed appointments whose start time has passed as no-show."

    def add_arguments(self, parser):
        parser.add_argument(
            '--grace-minutes',
            type=int,
            default=None,
            help="Minutes after the start time before an appointment counts as missed "
                 "(default: SCHEDULING['NO_SHOW_GRACE_MINUTES'])",
        )
        parser.add_argument('--dry-run', action='store_true', help="List candidates without changing them")

    def handle(self, *args, **options):
        now = timezone.now()
        grace = options['grace_minutes']
        if grace is None:
            grace = int(getattr(settings, 'SCHEDULING', {}).get('NO_SHOW_GRACE_MINUTES', 15))

        candidates = list(overdue_appointments(now=now, grace_minutes=grace).values_list('pk', 'appointment_number'))
        if options['dry_run']:
            for _, number in candidates:
                self.stdout.write(number)
            self.stdout.write(self.style.SUCCESS(f"{len(candidates)} appointments would be marked no-show"))
            return

        marked = 0
        for pk, number in candidates:
            try:
                mark_no_show(pk, now=now)
            except StateConflict as exc:
                # checked in or cancelled since the candidate list was read
                logger.info("skipped %s: %s", number, exc.detail)
                continue
            marked += 1

        self.stdout.write(self.style.SUCCESS(f"Marked {marked} of {len(candidates)} appointments no-show at {now}"))
