from rest_framework import serializers

from apps.purchases.models import Purchase


class PurchaseSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    recorded_by_username = serializers.CharField(source="recorded_by.username", read_only=True)

    class Meta:
        model = Purchase
        fields = ["id", "customer", "customer_name", "amount", "recorded_by", "recorded_by_username", "created_at"]
        read_only_fields = ["id", "recorded_by", "created_at"]


class PurchaseCreateSerializer(serializers.Serializer):
    customer = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than 0.")
        return value
