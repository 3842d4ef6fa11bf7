from datetime import timedelta

from django.conf import settings

from apps.rewards.models import CardState


def expiry_window():
    return timedelta(minutes=settings.SCRATCH_CARD_EXPIRY_MINUTES)


def card_state(card, now):
    if not card.is_scratched:
        return CardState.UNSCRATCHED
    if now > card.expires_at:
        return CardState.EXPIRED
    return CardState.ACTIVE


def is_claimable(card, now):
    return card_state(card, now) == CardState.ACTIVE


def partition_cards(cards, now):
    groups = {state: [] for state in CardState.values}
    for card in cards:
        groups[card_state(card, now)].append(card)
    return groups
