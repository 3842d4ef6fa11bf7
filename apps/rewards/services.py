import logging
import random
import string
from dataclasses import dataclass, field
from decimal import Decimal
from functools import partial

from django.db import DatabaseError, OperationalError, transaction
from django.utils import timezone
from django.utils.crypto import get_random_string
from rest_framework.exceptions import NotFound, PermissionDenied

from apps.activity.services import record_activity
from apps.common.exceptions import PartialIssuanceError, TransientStoreError
from apps.common.validators import parse_uuid
from apps.customers.models import Customer
from apps.purchases.models import Purchase
from apps.rewards.accrual import cards_owed
from apps.rewards.lifecycle import card_state, expiry_window
from apps.rewards.models import CardState, PrizeKind, RewardAccount, ScratchCard
from apps.rewards.prizes import PrizeTable
from apps.rewards.signals import announce_cards_issued

logger = logging.getLogger(__name__)

CARD_CODE_LENGTH = 8
CARD_CODE_CHARS = string.ascii_uppercase + string.digits

_system_random = random.SystemRandom()


@dataclass
class IssuanceResult:
    customer: Customer
    total_purchase: Decimal
    cards: list = field(default_factory=list)

    @property
    def cards_minted(self):
        return len(self.cards)


@dataclass
class ScratchResult:
    card: ScratchCard
    revealed: bool

    @property
    def already_scratched(self):
        return not self.revealed


def generate_card_code():
    code = get_random_string(CARD_CODE_LENGTH, allowed_chars=CARD_CODE_CHARS)
    while ScratchCard.objects.filter(code=code).exists():
        code = get_random_string(CARD_CODE_LENGTH, allowed_chars=CARD_CODE_CHARS)
    return code


def mint_card(*, customer_id, prize, clock=timezone.now):
    if not Customer.objects.filter(pk=customer_id).exists():
        raise NotFound("Customer not found.")
    return ScratchCard.objects.create(
        customer_id=customer_id,
        code=generate_card_code(),
        prize_kind=prize.kind,
        prize_value=prize.value,
        issued_at=clock(),
    )


def scratch_card(*, card_id, customer_id=None, clock=timezone.now):
    """Reveal a card exactly once.

    The transition is a single conditional UPDATE, so of any number of
    concurrent callers only one sees ``revealed=True``; the rest get the
    card back with ``revealed=False``.
    """
    card_id = parse_uuid(card_id, "card_id")
    if customer_id is not None:
        customer_id = parse_uuid(customer_id, "customer_id")

    try:
        card = ScratchCard.objects.filter(pk=card_id).first()
        if card is None:
            raise NotFound("Scratch card not found.")
        if customer_id is not None and card.customer_id != customer_id:
            raise PermissionDenied("This scratch card belongs to another customer.")

        now = clock()
        updated = ScratchCard.objects.filter(pk=card_id, is_scratched=False).update(
            is_scratched=True,
            scratched_at=now,
            expires_at=now + expiry_window(),
        )
        card.refresh_from_db()
    except OperationalError as exc:
        raise TransientStoreError() from exc

    if updated:
        logger.info("Scratch card %s revealed for customer %s", card.pk, card.customer_id)
    else:
        logger.info("Scratch card %s was already scratched", card.pk)
    return ScratchResult(card=card, revealed=bool(updated))


def list_cards_for_customer(customer_id):
    customer_id = parse_uuid(customer_id, "customer_id")
    return list(ScratchCard.objects.filter(customer_id=customer_id).order_by("-issued_at"))


def summarize_cards(cards, now):
    totals = {state: 0 for state in CardState.values}
    percentage_discount = Decimal("0.00")
    amount_discount = Decimal("0.00")
    for card in cards:
        state = card_state(card, now)
        totals[state] += 1
        if state != CardState.ACTIVE:
            continue
        if card.prize_kind == PrizeKind.PERCENTAGE_DISCOUNT:
            percentage_discount += card.prize_value
        elif card.prize_kind == PrizeKind.AMOUNT_DISCOUNT:
            amount_discount += card.prize_value

    return {
        "total_cards": len(cards),
        "unscratched_cards": totals[CardState.UNSCRATCHED],
        "scratched_cards": totals[CardState.ACTIVE] + totals[CardState.EXPIRED],
        "active_cards": totals[CardState.ACTIVE],
        "expired_cards": totals[CardState.EXPIRED],
        "total_percentage_discount": percentage_discount,
        "total_amount_discount": amount_discount,
    }


def issue_cards_for_customer(*, customer_id, actor=None, clock=timezone.now, rng=None, prize_table=None):
    """Mint every card the customer is owed and not yet holding.

    Runs under a lock on the customer row; the RewardAccount counter is then
    advanced with a compare-and-swap so a second issuer that slipped past the
    lock (backends without row locks) rolls back instead of double minting.
    Safe to call repeatedly: ``owed`` is always recomputed from the live
    card count.
    """
    customer_id = parse_uuid(customer_id, "customer_id")
    rng = rng or _system_random
    prize_table = prize_table or PrizeTable.from_settings()
    minted = []
    failure = None

    try:
        with transaction.atomic():
            customer = Customer.objects.select_for_update().filter(pk=customer_id).first()
            if customer is None:
                raise NotFound("Customer not found.")
            account, _ = RewardAccount.objects.get_or_create(customer=customer)

            total = Purchase.total_for_customer(customer.pk)
            issued = ScratchCard.objects.filter(customer=customer).count()
            owed = cards_owed(total, issued)
            if owed == 0:
                return IssuanceResult(customer=customer, total_purchase=total)

            for _ in range(owed):
                prize = prize_table.draw(rng)
                try:
                    with transaction.atomic():
                        minted.append(mint_card(customer_id=customer.pk, prize=prize, clock=clock))
                except OperationalError:
                    # Lock or connection trouble: drop the whole batch and let the caller retry.
                    raise
                except DatabaseError as exc:
                    logger.exception("Minting scratch card %d/%d for customer %s failed", len(minted) + 1, owed, customer.pk)
                    failure = exc
                    break

            swapped = RewardAccount.objects.filter(
                pk=account.pk,
                issued_count=account.issued_count,
            ).update(issued_count=issued + len(minted), updated_at=clock())
            if not swapped:
                logger.warning("Concurrent issuance detected for customer %s, rolling back", customer.pk)
                raise TransientStoreError("Another issuance for this customer is in progress, try again.")

            if minted:
                record_activity(
                    actor=actor,
                    action="scratch_cards.issue",
                    entity_type="customer",
                    entity_id=customer.pk,
                    description=f"Issued {len(minted)} scratch card(s) to {customer.name}",
                    metadata={"cards_minted": len(minted), "owed": owed, "total_purchase": str(total)},
                )
                transaction.on_commit(
                    partial(
                        announce_cards_issued,
                        customer=customer,
                        cards_minted=len(minted),
                        total_purchase=total,
                    )
                )
    except OperationalError as exc:
        raise TransientStoreError() from exc

    if failure is not None:
        if not minted:
            raise TransientStoreError("Scratch cards could not be issued, try again.") from failure
        raise PartialIssuanceError(minted=len(minted), owed=owed) from failure

    logger.info("Issued %d scratch card(s) to customer %s", len(minted), customer.pk)
    return IssuanceResult(customer=customer, total_purchase=total, cards=minted)
