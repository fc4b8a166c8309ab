import time
from django.core.management.base import BaseCommand
from payments.integrations.pesapal import PesapalClient
from payments.services import (
    GatewayFailure, OrderNotFound, PaymentNotFound, orphan_completed_payments, reconcile_payment,
    settle_completed_orders, stale_open_payments,
)


class Command(BaseCommand):
    help = "Re-check open Pesapal payments and settle orders whose payment completed but were never marked paid"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=10)

    def handle(self, *args, **opts):
        settled = settle_completed_orders()
        for p in settled:
            self.stdout.write(self.style.SUCCESS(f"Settled order {p.order_id} for completed payment {p.reference}"))

        for p in orphan_completed_payments():
            self.stdout.write(self.style.ERROR(
                f"{p.reference}: payment completed (tracking {p.tracking_id}) but has no order to settle"
            ))

        qs = stale_open_payments(opts["older_than_minutes"])[:opts["max"]]
        payments = list(qs)
        if not payments:
            self.stdout.write(self.style.SUCCESS("No open payments to reconcile."))
            return

        client = PesapalClient()
        updated = 0
        for p in payments:
            try:
                result = reconcile_payment(p.tracking_id, p.reference, client=client)
                updated += 1
                self.stdout.write(self.style.SUCCESS(f"Updated {p.reference} -> {result.payment.status}"))
            except OrderNotFound:
                self.stdout.write(self.style.ERROR(f"{p.reference}: completed but has no order"))
            except (GatewayFailure, PaymentNotFound) as e:
                self.stdout.write(self.style.WARNING(f"{p.reference}: {e}"))
            if opts["sleep"]:
                time.sleep(opts["sleep"])

        self.stdout.write(self.style.SUCCESS(f"Checked {len(payments)}, updated {updated} payments."))
