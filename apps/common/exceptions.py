from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler


class ServiceError(APIException):
    """APIException carrying extra context that is rendered under ``fields``."""

    def __init__(self, detail=None, code=None, **fields):
        super().__init__(detail=detail, code=code)
        self.fields = fields


class TransientStoreError(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Storage is temporarily unavailable, try again."
    default_code = "transient_store_error"


class PartialIssuanceError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Only part of the owed scratch cards could be issued."
    default_code = "partial_issuance"

    def __init__(self, *, minted, owed, detail=None, **fields):
        super().__init__(detail=detail, minted=minted, owed=owed, **fields)
        self.minted = minted
        self.owed = owed


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(response.data, dict):
        detail = response.data.get("detail", "Request failed")
        fields = {k: v for k, v in response.data.items() if k != "detail"}
    else:
        detail = "Request failed"
        fields = {}
    fields.update(getattr(exc, "fields", {}))

    response.data = {
        "code": getattr(exc, "default_code", "error"),
        "detail": detail,
        "fields": fields,
    }
    return response
