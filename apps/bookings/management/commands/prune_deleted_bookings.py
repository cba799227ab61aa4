import logging
from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from apps.bookings.models import Booking
from shared.conf import retention_days

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Permanently delete bookings that were soft-deleted longer than the retention period"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Retention period in days (defaults to BOOKING['RETENTION_DAYS'])",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only list the bookings that would be deleted",
        )
        parser.add_argument(
            "--yes",
            action="store_true",
            help="Do not ask for confirmation",
        )

    def handle(self, *args, **options):
        days = options["days"] if options["days"] is not None else retention_days()
        if days < 1:
            raise CommandError("--days must be a positive number")

        cutoff = timezone.now() - timedelta(days=days)
        candidates = Booking.all_objects.filter(deleted_at__isnull=False, deleted_at__lt=cutoff).order_by("pk")
        count = candidates.count()

        if count == 0:
            self.stdout.write(self.style.SUCCESS(f"No bookings soft-deleted more than {days} days ago"))
            return

        if options["dry_run"]:
            self.stdout.write(f"{count} bookings would be permanently deleted:")
            self.stdout.write(f"  {'ID':>8}  {'Room':>8}  {'Check-in':<10}  {'Check-out':<10}  Deleted at")
            for booking in candidates:
                self.stdout.write(
                    f"  {booking.pk:>8}  {booking.room_id:>8}  {booking.check_in!s:<10}  "
                    f"{booking.check_out!s:<10}  {booking.deleted_at:%Y-%m-%d %H:%M}"
                )
            self.stdout.write(self.style.WARNING("Dry run, nothing was deleted"))
            return

        if not options["yes"]:
            answer = input(f"Permanently delete {count} bookings? This cannot be undone. [y/N] ")
            if answer.strip().lower() not in ("y", "yes"):
                self.stdout.write(self.style.WARNING("Aborted"))
                return

        ids = list(candidates.values_list("pk", flat=True))
        logger.warning(f"Purging {len(ids)} soft-deleted bookings older than {days} days: {ids}")
        deleted, _ = Booking.all_objects.filter(pk__in=ids).delete()

        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} bookings"))
