from django.utils import timezone
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from apps.activity.services import record_activity
from apps.common.permissions import RolePermission, owned_by
from apps.common.validators import parse_uuid
from apps.customers.models import Customer
from apps.rewards.lifecycle import partition_cards
from apps.rewards.models import CardState, ScratchCard
from apps.rewards.serializers import CardSummarySerializer, RevealSerializer, ScratchCardSerializer
from apps.rewards.services import list_cards_for_customer, scratch_card, summarize_cards


class ScratchCardViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ScratchCard.objects.select_related("customer").order_by("-issued_at")
    serializer_class = ScratchCardSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["cards.view"],
        "retrieve": ["cards.view"],
        "summary": ["cards.view"],
        "reveal": ["cards.reveal"],
    }

    def get_queryset(self):
        queryset = owned_by(super().get_queryset(), self.request.user, owner_lookup="customer__owner")
        customer_id = self.request.query_params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=parse_uuid(customer_id, "customer"))
        return queryset

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context.setdefault("now", timezone.now())
        return context

    def list(self, request, *args, **kwargs):
        cards = self.filter_queryset(self.get_queryset())
        state = request.query_params.get("state")
        if state:
            if state not in CardState.values:
                raise ValidationError({"state": f"Must be one of: {', '.join(CardState.values)}."})
            cards = partition_cards(cards, timezone.now())[state]

        page = self.paginate_queryset(cards)
        if page is not None:
            serializer = self.get_serializer(page, many=True)
            return self.get_paginated_response(serializer.data)
        serializer = self.get_serializer(cards, many=True)
        return Response(serializer.data)

    @action(detail=False, methods=["get"])
    def summary(self, request):
        customer_id = request.query_params.get("customer")
        if not customer_id:
            raise ValidationError({"customer": "This query parameter is required."})
        customers = owned_by(Customer.objects.all(), request.user)
        customer = customers.filter(pk=parse_uuid(customer_id, "customer")).first()
        if customer is None:
            raise NotFound("Customer not found.")

        cards = list_cards_for_customer(customer.pk)
        payload = {"customer_id": customer.pk, "customer_name": customer.name}
        payload.update(summarize_cards(cards, timezone.now()))
        return Response(CardSummarySerializer(payload).data)

    @action(detail=True, methods=["post"])
    def reveal(self, request, pk=None):
        card = self.get_object()
        params = RevealSerializer(data=request.data)
        params.is_valid(raise_exception=True)

        result = scratch_card(card_id=card.pk, customer_id=params.validated_data["customer_id"])
        if result.already_scratched:
            serializer = self.get_serializer(result.card, context={**self.get_serializer_context(), "hide_prize": True})
            return Response(
                {
                    "status": "already_scratched",
                    "detail": "This scratch card has already been used.",
                    "card": serializer.data,
                },
                status=200,
            )

        record_activity(
            actor=request.user,
            action="scratch_card.reveal",
            entity_type="scratch_card",
            entity_id=result.card.pk,
            description=f"Revealed scratch card {result.card.code}",
            metadata={"prize_kind": result.card.prize_kind, "prize_value": str(result.card.prize_value)},
        )
        return Response({"status": "revealed", "card": self.get_serializer(result.card).data}, status=200)
