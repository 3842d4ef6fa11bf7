from django.db.models import Count, DecimalField, IntegerField, OuterRef, Subquery, Sum, Value
from django.db.models.functions import Coalesce

from apps.purchases.models import Purchase
from apps.rewards.models import ScratchCard


MONEY_FIELD = DecimalField(max_digits=12, decimal_places=2)


def with_reward_metrics(queryset):
    purchases_subquery = (
        Purchase.objects.filter(customer_id=OuterRef("pk"))
        .values("customer_id")
        .annotate(total=Sum("amount"))
        .values("total")
    )
    cards_subquery = (
        ScratchCard.objects.filter(customer_id=OuterRef("pk"))
        .values("customer_id")
        .annotate(total=Count("id"))
        .values("total")
    )
    return queryset.annotate(
        total_purchases=Coalesce(Subquery(purchases_subquery, output_field=MONEY_FIELD), Value(0, output_field=MONEY_FIELD)),
        cards_issued=Coalesce(Subquery(cards_subquery, output_field=IntegerField()), Value(0)),
    )
