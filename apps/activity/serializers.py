from rest_framework import serializers

from apps.activity.models import ActivityLog


class ActivityLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)

    class Meta:
        model = ActivityLog
        fields = ["id", "actor", "actor_username", "action", "entity_type", "entity_id", "description", "metadata", "created_at"]
        read_only_fields = fields
