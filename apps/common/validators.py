import uuid

from rest_framework.exceptions import ValidationError


def parse_uuid(value, field):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError({field: f"'{value}' is not a valid id."}) from None
