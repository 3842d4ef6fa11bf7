from django.dispatch import receiver

from apps.rewards.models import CardNotification
from apps.rewards.signals import scratch_cards_issued


def build_sms_message(customer, cards_minted, total_purchase):
    plural = "s" if cards_minted != 1 else ""
    return (
        f"Hi {customer.name}, you earned {cards_minted} scratch card{plural} "
        f"on purchases totalling Rs {total_purchase}. Scratch now to reveal your reward!"
    )


@receiver(scratch_cards_issued)
def queue_sms_notification(sender, customer, cards_minted, total_purchase, **kwargs):
    CardNotification.objects.create(
        customer=customer,
        phone=customer.phone,
        cards_minted=cards_minted,
        total_purchase=total_purchase,
        message=build_sms_message(customer, cards_minted, total_purchase),
    )
