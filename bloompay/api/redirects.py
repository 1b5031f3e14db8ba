"""Deep links the payment redirect routes send the mobile app to."""
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from bloompay.core.reconciliation import ReconciliationResult


def _encode(params: Mapping[str, Any]) -> str:
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = str(value)
    return urlencode(cleaned)


def success_link(base: str, result: ReconciliationResult) -> str:
    """``{base}/success`` carrying the reconciliation outcome."""
    return f"{base}/success?" + _encode(
        {
            "orderId": result.order_id,
            "orderCode": result.order_code,
            "status": result.status,
            "success": result.success,
            "message": result.message,
            "paymentCode": result.order_code,
            "transactionId": result.transaction_id,
        }
    )


def cancel_link(base: str, result: ReconciliationResult) -> str:
    """``{base}/cancel``; a cancel redirect always reports a cancelled payment."""
    return f"{base}/cancel?" + _encode(
        {
            "orderId": result.order_id,
            "orderCode": result.order_code,
            "status": "CANCELLED",
            "cancelled": True,
            "success": False,
            "message": result.message,
        }
    )


def error_link(
    base: str, error: str, order_code: Optional[str], cancelled: bool = False
) -> str:
    """``{base}/error`` for reconciliation failures."""
    params = {"error": error, "orderCode": order_code or "", "success": False}
    if cancelled:
        params["cancelled"] = True
    return f"{base}/error?" + _encode(params)
