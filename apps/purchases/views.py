from rest_framework import status, viewsets
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from apps.common.permissions import RolePermission, owned_by
from apps.common.validators import parse_uuid
from apps.customers.models import Customer
from apps.purchases.models import Purchase
from apps.purchases.serializers import PurchaseCreateSerializer, PurchaseSerializer
from apps.purchases.services import record_purchase


class PurchaseViewSet(viewsets.ModelViewSet):
    queryset = Purchase.objects.select_related("customer", "recorded_by").order_by("-created_at")
    serializer_class = PurchaseSerializer
    permission_classes = [RolePermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["purchases.view"],
        "retrieve": ["purchases.view"],
        "create": ["purchases.create"],
    }

    def get_queryset(self):
        queryset = owned_by(super().get_queryset(), self.request.user, owner_lookup="customer__owner")
        customer_id = self.request.query_params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=parse_uuid(customer_id, "customer"))
        return queryset

    def create(self, request, *args, **kwargs):
        params = PurchaseCreateSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        customer_id = params.validated_data["customer"]
        if not owned_by(Customer.objects.all(), request.user).filter(pk=customer_id).exists():
            raise NotFound("Customer not found.")

        result = record_purchase(
            customer_id=customer_id,
            amount=params.validated_data["amount"],
            recorded_by=request.user,
        )
        return Response(
            {
                "purchase_id": str(result.purchase.id),
                "cards_minted": result.cards_minted,
                "total_purchase": str(result.total_purchase),
                "purchase": PurchaseSerializer(result.purchase).data,
            },
            status=status.HTTP_201_CREATED,
        )
