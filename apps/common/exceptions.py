from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, PermissionDenied, ValidationError
from rest_framework.views import exception_handler

__all__ = [
    "InsufficientCredit",
    "InsufficientStock",
    "InvalidTransition",
    "NotFound",
    "PermissionDenied",
    "QuantityExceeded",
    "ValidationError",
    "api_exception_handler",
]


class InvalidTransition(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The record is not in a state that allows this action."
    default_code = "invalid_transition"


class QuantityExceeded(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Quantity exceeds what is still pending."
    default_code = "quantity_exceeded"


class InsufficientCredit(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Insufficient credit balance."
    default_code = "insufficient_credit"


class InsufficientStock(ValidationError):
    default_detail = "Insufficient product quantity."
    default_code = "insufficient_stock"


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(response.data, dict):
        detail = response.data.get("detail", "Request failed")
        fields = {k: v for k, v in response.data.items() if k != "detail"}
    elif isinstance(response.data, list) and response.data:
        detail = str(response.data[0])
        fields = {}
    else:
        detail = "Request failed"
        fields = {}

    response.data = {
        "code": getattr(exc, "default_code", "error"),
        "detail": detail,
        "fields": fields,
    }
    return response
