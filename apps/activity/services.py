from apps.activity.models import ActivityLog


def record_activity(*, actor, action, entity_type, entity_id, description="", metadata=None):
    return ActivityLog.objects.create(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        description=description[:255],
        metadata=metadata or {},
    )
