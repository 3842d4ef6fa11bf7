from rest_framework import viewsets

from apps.activity.models import ActivityLog
from apps.activity.serializers import ActivityLogSerializer
from apps.common.permissions import RolePermission, owned_by


class ActivityLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ActivityLog.objects.select_related("actor").order_by("-created_at")
    serializer_class = ActivityLogSerializer
    permission_classes = [RolePermission]
    capability_map = {"list": ["activity.view"], "retrieve": ["activity.view"]}

    def get_queryset(self):
        queryset = owned_by(super().get_queryset(), self.request.user, owner_lookup="actor")
        action = self.request.query_params.get("action")
        entity_type = self.request.query_params.get("entity_type")
        if action:
            queryset = queryset.filter(action=action)
        if entity_type:
            queryset = queryset.filter(entity_type=entity_type)
        return queryset
