from django.core.management.base import BaseCommand, CommandError
from rest_framework.exceptions import APIException

from apps.common.validators import parse_uuid
from apps.customers.models import Customer
from apps.rewards.services import issue_cards_for_customer


class Command(BaseCommand):
    help = "Issue scratch cards still owed to customers (reconciles interrupted issuance)."

    def add_arguments(self, parser):
        parser.add_argument("--customer", help="Only reconcile this customer id.")

    def handle(self, *args, **options):
        customers = Customer.objects.order_by("created_at")
        if options["customer"]:
            try:
                customer_id = parse_uuid(options["customer"], "customer")
            except APIException as exc:
                raise CommandError(str(exc.detail)) from exc
            customers = customers.filter(pk=customer_id)
            if not customers.exists():
                raise CommandError(f"Customer {options['customer']} not found.")

        issued_total = 0
        failures = 0
        for customer_id in list(customers.values_list("id", flat=True)):
            try:
                result = issue_cards_for_customer(customer_id=customer_id)
            except APIException as exc:
                failures += 1
                self.stderr.write(f"{customer_id}: {exc.detail}")
                continue
            if result.cards_minted:
                issued_total += result.cards_minted
                self.stdout.write(f"{customer_id}: {result.cards_minted} card(s) issued")

        self.stdout.write(self.style.SUCCESS(f"Scratch cards issued: {issued_total}"))
        if failures:
            raise CommandError(f"Issuance failed for {failures} customer(s).")
