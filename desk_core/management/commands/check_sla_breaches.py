from django.core.management.base import BaseCommand

from desk_core.sla.monitor import check_sla_breaches


class Command(BaseCommand):
    help = "Open SLA breach alerts for tickets whose due timestamps have passed"

    def add_arguments(self, parser):
        parser.add_argument("--tenant", type=int, default=None, help="Limit the scan to one tenant id")

    def handle(self, *args, **options):
        created = check_sla_breaches(tenant_id=options["tenant"])
        self.stdout.write(self.style.SUCCESS(f"{created} new SLA breach alert(s)"))
