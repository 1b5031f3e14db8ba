"""
Payment gateway webhook handler.

Implements:
- Gateway verification before anything is read from the payload
- Reconciliation through the same engine the redirect uses
- Bounded error messages for the external caller

Redelivered webhooks need no deduplication store: reconciliation itself is
idempotent.
"""
import time
from typing import Any, Dict

import structlog

from bloompay.core.exceptions import BloomPayError, InvalidSignature
from bloompay.core.reconciliation import SUCCESS_CODE, GatewayReport, ReconciliationEngine
from bloompay.integrations.gateway import PaymentGateway
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 200


class WebhookError(Exception):
    """Raised when webhook processing fails."""

    def __init__(self, message: str, error_code: str = "webhook_error"):
        super().__init__(message[:MAX_ERROR_LENGTH])
        self.message = message[:MAX_ERROR_LENGTH]
        self.error_code = error_code


def webhook_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reconciliation fields from verified webhook data.

    PayOS reports the outcome through the result ``code`` only, so the status
    is derived from it unless the gateway sent one explicitly.
    """
    fields = dict(data)
    if "status" not in fields:
        code = fields.get("code")
        fields["status"] = "PAID" if code is None or str(code) == SUCCESS_CODE else "FAILED"
    return fields


class WebhookHandler:
    """
    Handles gateway webhook events.

    Features:
    - Verification through the gateway adapter
    - Idempotent processing via the reconciliation engine
    """

    def __init__(self, gateway: PaymentGateway, engine: ReconciliationEngine):
        """
        Initialize webhook handler.

        Args:
            gateway: Gateway adapter that verifies signatures
            engine: Reconciliation engine
        """
        self.gateway = gateway
        self.engine = engine

        logger.info("webhook_handler_initialized")

    async def process(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Verify and reconcile one webhook delivery.

        Args:
            payload: Parsed JSON body

        Returns:
            Dict[str, Any]: ``{success, message, data: {orderCode, status}}``

        Raises:
            WebhookError: For invalid signatures and any processing failure
        """
        start = time.perf_counter()
        try:
            fields = webhook_fields(await self.gateway.verify_webhook(payload))
            order_code = fields.get("orderCode")
            if order_code is None or str(order_code) == "":
                raise WebhookError("Webhook payload is missing orderCode", "invalid_payload")

            result = await self.engine.reconcile(
                str(order_code), GatewayReport.from_webhook(fields), channel="webhook"
            )
        except InvalidSignature as e:
            metrics.record_webhook_event("invalid_signature", time.perf_counter() - start)
            logger.error("webhook_signature_verification_failed")
            raise WebhookError(e.message, e.error_code)
        except WebhookError:
            metrics.record_webhook_event("failed", time.perf_counter() - start)
            raise
        except BloomPayError as e:
            metrics.record_webhook_event("failed", time.perf_counter() - start)
            logger.warning("webhook_processing_rejected", error=e.message, error_code=e.error_code)
            raise WebhookError(e.message, e.error_code)
        except Exception as e:
            metrics.record_webhook_event("failed", time.perf_counter() - start)
            logger.exception("webhook_processing_error", error_type=type(e).__name__)
            raise WebhookError("Webhook processing failed")

        metrics.record_webhook_event("success", time.perf_counter() - start)
        logger.info(
            "webhook_processed",
            order_code=result.order_code,
            status=result.status,
            transaction_status=result.transaction_status,
        )
        return {
            "success": True,
            "message": "Webhook processed successfully",
            "data": {
                "orderCode": result.order_code,
                "status": result.status,
                "transactionStatus": result.transaction_status,
            },
        }
