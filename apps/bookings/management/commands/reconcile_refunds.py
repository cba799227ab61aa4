from django.core.management.base import BaseCommand

from apps.bookings.reconciliation import RefundReconciler


class Command(BaseCommand):
    help = "Settle stuck refund_pending bookings and retry refund_failed ones"

    def handle(self, *args, **options):
        summary = RefundReconciler().run()

        self.stdout.write(self.style.SUCCESS("Refund reconciliation finished"))
        for name, value in summary.items():
            self.stdout.write(f"  {name}: {value}")
        if summary["errors"]:
            self.stdout.write(self.style.WARNING(f"{summary['errors']} bookings could not be reconciled, see logs"))
