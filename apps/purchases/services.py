import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.db import OperationalError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from apps.activity.services import record_activity
from apps.common.exceptions import ServiceError, TransientStoreError
from apps.common.validators import parse_uuid
from apps.customers.models import Customer
from apps.purchases.models import Purchase
from apps.rewards.services import issue_cards_for_customer

logger = logging.getLogger(__name__)


@dataclass
class PurchaseResult:
    purchase: Purchase
    cards_minted: int
    total_purchase: Decimal


def parse_amount(value):
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({"amount": "Amount must be a number."}) from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError({"amount": "Amount must be greater than 0."})
    return amount


def record_purchase(*, customer_id, amount, recorded_by, clock=timezone.now, rng=None):
    """Append a purchase to the ledger, then issue any scratch cards it unlocked.

    The purchase commits on its own. If issuance fails afterwards the error is
    re-raised with ``purchase_id`` in its fields; the owed cards are picked up
    by the next issuance for the customer.
    """
    customer_id = parse_uuid(customer_id, "customer")
    amount = parse_amount(amount)

    try:
        with transaction.atomic():
            customer = Customer.objects.filter(pk=customer_id).first()
            if customer is None:
                raise NotFound("Customer not found.")
            purchase = Purchase.objects.create(customer=customer, amount=amount, recorded_by=recorded_by)
            record_activity(
                actor=recorded_by,
                action="purchase.create",
                entity_type="purchase",
                entity_id=purchase.id,
                description=f"Added purchase of Rs {amount} for {customer.name}",
                metadata={"customer_id": str(customer.id), "amount": str(amount)},
            )
    except OperationalError as exc:
        raise TransientStoreError() from exc

    logger.info("Recorded purchase %s of %s for customer %s", purchase.id, amount, customer.id)

    try:
        issuance = issue_cards_for_customer(customer_id=customer.id, actor=recorded_by, clock=clock, rng=rng)
    except ServiceError as exc:
        exc.fields["purchase_id"] = str(purchase.id)
        raise

    return PurchaseResult(
        purchase=purchase,
        cards_minted=issuance.cards_minted,
        total_purchase=issuance.total_purchase,
    )
