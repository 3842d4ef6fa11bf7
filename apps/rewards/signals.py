import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)

# kwargs: customer, cards_minted, total_purchase
scratch_cards_issued = Signal()


def announce_cards_issued(*, customer, cards_minted, total_purchase):
    """Fire-and-forget: a failing receiver is logged and never reaches the minting code."""
    responses = scratch_cards_issued.send_robust(
        sender=customer.__class__,
        customer=customer,
        cards_minted=cards_minted,
        total_purchase=total_purchase,
    )
    for receiver, response in responses:
        if isinstance(response, Exception):
            logger.error(
                "Scratch card notification receiver %r failed for customer %s",
                receiver,
                customer.pk,
                exc_info=(type(response), response, response.__traceback__),
            )
