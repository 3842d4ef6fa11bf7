from decimal import Decimal

from django.conf import settings


def spend_threshold():
    return Decimal(settings.SCRATCH_CARD_SPEND_THRESHOLD)


def cards_owed(total_amount, already_issued, threshold=None):
    """Number of new cards a customer is owed.

    ``floor(total_amount / threshold) - already_issued``, never below zero: a
    customer holding more cards than the total entitles (manual corrections,
    a lowered threshold) simply earns nothing until spend catches up.
    """
    threshold = spend_threshold() if threshold is None else Decimal(threshold)
    total_amount = Decimal(total_amount)
    if threshold <= 0:
        raise ValueError("Spend threshold must be greater than 0.")
    if total_amount < 0:
        raise ValueError("Purchase total cannot be negative.")
    if already_issued < 0:
        raise ValueError("Issued card count cannot be negative.")

    entitled = int(total_amount // threshold)
    return max(entitled - already_issued, 0)
