from django.utils import timezone
from rest_framework import serializers

from apps.rewards.lifecycle import card_state
from apps.rewards.models import ScratchCard

PRIZE_FIELDS = ("prize_kind", "prize_value")


class ScratchCardSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    state = serializers.SerializerMethodField()

    class Meta:
        model = ScratchCard
        fields = [
            "id",
            "customer",
            "customer_name",
            "code",
            "prize_kind",
            "prize_value",
            "issued_at",
            "is_scratched",
            "scratched_at",
            "expires_at",
            "state",
        ]
        read_only_fields = fields

    def _now(self):
        return self.context.get("now") or timezone.now()

    def get_state(self, obj):
        return card_state(obj, self._now())

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # The prize is drawn at mint time but stays hidden until the card is scratched.
        if not instance.is_scratched or self.context.get("hide_prize"):
            for name in PRIZE_FIELDS:
                data[name] = None
        return data


class CardSummarySerializer(serializers.Serializer):
    customer_id = serializers.UUIDField()
    customer_name = serializers.CharField()
    total_cards = serializers.IntegerField()
    unscratched_cards = serializers.IntegerField()
    scratched_cards = serializers.IntegerField()
    active_cards = serializers.IntegerField()
    expired_cards = serializers.IntegerField()
    total_percentage_discount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_amount_discount = serializers.DecimalField(max_digits=12, decimal_places=2)


class RevealSerializer(serializers.Serializer):
    customer_id = serializers.UUIDField()
