from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.activity.services import record_activity
from apps.common.permissions import RolePermission, owned_by
from apps.customers.models import Customer, normalize_phone
from apps.customers.querysets import with_reward_metrics
from apps.customers.serializers import CustomerSerializer
from apps.rewards.services import issue_cards_for_customer


class CustomerViewSet(viewsets.ModelViewSet):
    queryset = Customer.objects.select_related("owner").order_by("-updated_at")
    serializer_class = CustomerSerializer
    permission_classes = [RolePermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["customers.view"],
        "retrieve": ["customers.view"],
        "create": ["customers.manage"],
        "issue_cards": ["cards.issue"],
    }

    def get_queryset(self):
        queryset = owned_by(super().get_queryset(), self.request.user)
        phone = self.request.query_params.get("phone")
        query = self.request.query_params.get("q")
        if phone:
            queryset = queryset.filter(phone_normalized=normalize_phone(phone))
        if query:
            normalized = normalize_phone(query)
            queryset = queryset.filter(Q(name__icontains=query) | Q(phone__icontains=query) | Q(phone_normalized__icontains=normalized))
        return with_reward_metrics(queryset)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        customer = serializer.save(owner=request.user)
        record_activity(
            actor=request.user,
            action="customer.create",
            entity_type="customer",
            entity_id=customer.id,
            description=f"Registered customer {customer.name}",
            metadata={"phone": customer.phone},
        )
        customer = self.get_queryset().get(pk=customer.pk)
        return Response(self.get_serializer(customer).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="issue-cards")
    def issue_cards(self, request, pk=None):
        customer = self.get_object()
        result = issue_cards_for_customer(customer_id=customer.pk, actor=request.user)
        return Response(
            {
                "customer_id": str(customer.pk),
                "cards_minted": result.cards_minted,
                "total_purchase": str(result.total_purchase),
            },
            status=status.HTTP_200_OK,
        )
