from django.core.management.base import BaseCommand

from workshop import billing
from workshop.models import JobCard


class Command(BaseCommand):
    help = 'Re-runs the billing calculator on job cards. Safe to repeat.'

    def add_arguments(self, parser):
        parser.add_argument('--include-closed', action='store_true', help='Also recalculate delivered and cancelled job cards')
        parser.add_argument('--dry-run', action='store_true', help='Report the totals without saving them')

    def handle(self, *args, **options):
        job_cards = JobCard.objects.all().order_by('pk')
        if not options['include_closed']:
            job_cards = job_cards.exclude(status__in=JobCard.TERMINAL_STATUSES)

        changed = 0
        for job_card in job_cards:
            # Billing copied from an approved estimate has no items to recompute from
            if not job_card.items.exists():
                self.stdout.write(f'Skipped {job_card.job_number}: no job items')
                continue
            before = job_card.grand_total
            billing.recalculate(job_card, save=not options['dry_run'])
            if job_card.grand_total != before:
                changed += 1
                self.stdout.write(self.style.WARNING(
                    f'{job_card.job_number}: ₹{before:.2f} -> ₹{job_card.grand_total:.2f}'
                ))
            else:
                self.stdout.write(self.style.SUCCESS(
                    f'Recalculated total for {job_card.job_number} - ₹{job_card.grand_total:.2f}'
                ))

        suffix = ' (dry run)' if options['dry_run'] else ''
        self.stdout.write(f'{changed} job card(s) changed{suffix}')
