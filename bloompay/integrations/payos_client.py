"""
PayOS gateway adapter built on the official ``payos`` SDK.

Implements:
- Payment link create/query/cancel through ``AsyncPayOS``
- Webhook verification through the SDK's checksum check
- Circuit breaker pattern
- Error classification (transient vs permanent)
- Bounded retry for the read-only payment link query only

The SDK's own retry loop is switched off. Payment link creation and
cancellation are never retried: a repeated create with the same order code is
rejected by PayOS, and the payment link service compensates locally instead.
"""
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
import structlog
from payos import (
    APIError,
    AsyncPayOS,
    ConnectionError as PayOSConnectionError,
    ConnectionTimeoutError,
    InternalServerError,
    PayOSError,
    TooManyRequestsError,
    WebhookError as PayOSWebhookError,
)
from payos.types import CreatePaymentLinkRequest, ItemData, Webhook
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from bloompay.config import Settings, get_settings
from bloompay.core.exceptions import GatewayError, InvalidSignature, InvalidWebhookPayload
from bloompay.integrations.gateway import PaymentLink, PaymentLinkRequest
from bloompay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (
    PayOSConnectionError,
    ConnectionTimeoutError,
    InternalServerError,
    TooManyRequestsError,
)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, GatewayError) and error.transient


def to_gateway_error(operation: str, error: Exception) -> GatewayError:
    """Classify an SDK or transport failure as a transient or permanent GatewayError."""
    if isinstance(error, TRANSIENT_ERRORS):
        return GatewayError(
            f"PayOS {operation} failed: {error}",
            transient=True,
            original_error=error,
            http_status=getattr(error, "status_code", None),
        )
    if isinstance(error, APIError):
        return GatewayError(
            f"PayOS {operation} failed: {error.error_desc or error}",
            transient=error.status_code == 408,
            original_error=error,
            gateway_code=error.error_code,
            http_status=error.status_code,
        )
    if isinstance(error, httpx.HTTPError):
        return GatewayError(
            f"PayOS {operation} failed: {error}", transient=True, original_error=error
        )
    return GatewayError(f"PayOS {operation} failed: {error}", original_error=error)


class CircuitBreaker:
    """
    Circuit breaker for payment gateway calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute a coroutine function with circuit breaker protection.

        Only transient gateway errors count as failures; a permanent error
        means the gateway answered and is healthy.

        Raises:
            GatewayError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise GatewayError("Payment gateway circuit breaker is open", transient=True)

        try:
            result = await func()
        except GatewayError as e:
            if e.transient:
                self.on_failure()
            else:
                self.on_success()
            raise
        self.on_success()
        return result

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


class PayOSClient:
    """
    PayOS implementation of ``PaymentGateway``.

    Features:
    - SDK-signed payment link creation and verified responses
    - Webhook verification
    - Circuit breaker around every call
    - Error classification (transient vs permanent)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize PayOS client.

        Without credentials the client still starts, but every call fails
        with a permanent ``GatewayError`` and every webhook is rejected.

        Args:
            settings: Application settings (credentials, base URL, timeout)
            http_client: Optional preconfigured httpx client handed to the SDK
            circuit_breaker: Optional circuit breaker instance
        """
        self.settings = settings or get_settings()
        self.http_client = http_client
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.payos: Optional[AsyncPayOS] = None
        if self.settings.gateway_configured:
            self.payos = AsyncPayOS(
                client_id=self.settings.payos_client_id,
                api_key=self.settings.payos_api_key,
                checksum_key=self.settings.payos_checksum_key,
                base_url=self.settings.payos_base_url,
                timeout=self.settings.gateway_timeout_seconds,
                max_retries=0,
                http_client=http_client,
            )

        logger.info(
            "payos_client_initialized",
            base_url=self.settings.payos_base_url,
            configured=self.payos is not None,
        )

    def _sdk(self) -> AsyncPayOS:
        if self.payos is None:
            raise GatewayError("PayOS credentials are not configured")
        return self.payos

    async def _call(self, operation: str, func: Callable[[AsyncPayOS], Awaitable[T]]) -> T:
        """
        Run one SDK call under the circuit breaker and record its outcome.

        Raises:
            GatewayError: Transient for network errors, timeouts and 5xx/429;
                permanent for other HTTP errors, non-success codes and
                unverifiable responses
        """
        sdk = self._sdk()

        async def _send() -> T:
            start = time.perf_counter()
            try:
                result = await func(sdk)
            except (PayOSError, httpx.HTTPError, ValidationError) as e:
                raise to_gateway_error(operation, e) from e
            finally:
                logger.debug(
                    "payos_request_sent",
                    operation=operation,
                    duration=time.perf_counter() - start,
                )
            metrics.record_gateway_call(operation, "success", time.perf_counter() - start)
            return result

        try:
            return await self.circuit_breaker.call(_send)
        except GatewayError as e:
            error_type = "transient" if e.transient else "permanent"
            metrics.record_gateway_call(operation, "error", 0.0)
            metrics.record_gateway_error(error_type)
            logger.error(
                "payos_api_error",
                operation=operation,
                error_type=error_type,
                error_message=e.message,
            )
            raise

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        """
        Create a PayOS checkout link.

        Args:
            request: Payment link request

        Returns:
            PaymentLink: Checkout URL, QR code and PayOS link id

        Raises:
            GatewayError: If link creation fails
        """
        payment_data = CreatePaymentLinkRequest(
            order_code=request.order_code,
            amount=request.amount,
            description=request.description,
            return_url=request.return_url,
            cancel_url=request.cancel_url,
            items=[
                ItemData(name=item.name, quantity=item.quantity, price=item.price)
                for item in request.items
            ],
            buyer_name=request.buyer_name,
            buyer_email=request.buyer_email,
            buyer_phone=request.buyer_phone,
        )

        logger.info(
            "creating_payment_link",
            order_code=request.order_code,
            amount=request.amount,
            item_count=len(request.items),
        )

        created = await self._call(
            "create_payment_link",
            lambda sdk: sdk.payment_requests.create(payment_data=payment_data),
        )

        logger.info(
            "payment_link_created",
            order_code=request.order_code,
            payment_link_id=created.payment_link_id,
        )
        return PaymentLink(
            checkout_url=created.checkout_url,
            qr_code=created.qr_code,
            payment_link_id=created.payment_link_id,
        )

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def get_payment_link(self, order_code: str) -> Dict[str, Any]:
        """
        Fetch the gateway's view of a payment link.

        Raises:
            GatewayError: If the query fails after retries
        """
        logger.info("retrieving_payment_link", order_code=order_code)
        link = await self._call(
            "get_payment_link", lambda sdk: sdk.payment_requests.get(order_code)
        )
        return link.model_dump_camel_case()

    async def cancel_payment_link(self, order_code: str, reason: str) -> Dict[str, Any]:
        """
        Cancel a payment link at the gateway.

        Raises:
            GatewayError: If cancellation fails
        """
        logger.info("cancelling_payment_link", order_code=order_code, reason=reason)
        link = await self._call(
            "cancel_payment_link",
            lambda sdk: sdk.payment_requests.cancel(order_code, reason),
        )
        return link.model_dump_camel_case()

    async def verify_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Verify a webhook delivery and return its signed payment fields.

        Args:
            payload: Parsed webhook body (``{code, desc, success, data, signature}``)

        Returns:
            Dict[str, Any]: The verified ``data`` object, camelCase keys

        Raises:
            InvalidWebhookPayload: If the body is not a PayOS webhook
            InvalidSignature: If the checksum does not match
        """
        try:
            webhook = Webhook.model_validate(payload)
        except ValidationError as e:
            raise InvalidWebhookPayload(
                f"Webhook payload is malformed ({e.error_count()} invalid fields)"
            )

        if self.payos is None:
            raise InvalidSignature("Invalid webhook signature")
        try:
            data = await self.payos.webhooks.verify(webhook)
        except PayOSWebhookError as e:
            logger.warning("payos_webhook_rejected", reason=str(e))
            raise InvalidSignature("Invalid webhook signature")
        return data.model_dump_camel_case()

    async def close(self) -> None:
        """Close the SDK client and any injected HTTP client."""
        if self.payos is not None:
            await self.payos.aclose()
        if self.http_client is not None:
            await self.http_client.aclose()
