from django.core.management.base import BaseCommand

from workshop.models import Invoice
from workshop.payments import reconcile_invoice


class Command(BaseCommand):
    help = 'Re-derives paid amount, balance and status of open invoices from their completed payments.'

    def add_arguments(self, parser):
        parser.add_argument('--dry-run', action='store_true', help='Only report drift')

    def handle(self, *args, **options):
        invoices = Invoice.objects.exclude(
            status__in=(Invoice.STATUS_CANCELLED, Invoice.STATUS_DRAFT),
        ).order_by('pk')

        drift_count = 0
        for invoice in invoices:
            old_paid, new_paid = reconcile_invoice(invoice, fix=not options['dry_run'])
            if old_paid == new_paid:
                continue
            drift_count += 1
            self.stdout.write(self.style.WARNING(
                f"Invoice {invoice.invoice_number}: recorded paid ₹{old_paid}, "
                f"payments total ₹{new_paid}"
            ))

        if drift_count == 0:
            self.stdout.write(self.style.SUCCESS('No invoice drift found.'))
        else:
            verb = 'found' if options['dry_run'] else 'fixed'
            self.stdout.write(f'{drift_count} invoice(s) {verb}.')
