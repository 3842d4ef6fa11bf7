from rest_framework import serializers

from apps.customers.models import Customer, normalize_phone


class CustomerSerializer(serializers.ModelSerializer):
    total_purchases = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    cards_issued = serializers.IntegerField(read_only=True)

    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "phone",
            "phone_normalized",
            "notes",
            "total_purchases",
            "cards_issued",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "phone_normalized", "created_at", "updated_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name is required.")
        return value

    def validate_phone(self, value):
        normalized = normalize_phone(value)
        if not normalized or not normalized.isdigit():
            raise serializers.ValidationError("Phone must contain digits only.")

        owner = self.context["request"].user
        duplicates = Customer.objects.filter(owner=owner, phone_normalized=normalized)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError("A customer with this phone is already registered.")
        return value.strip()
