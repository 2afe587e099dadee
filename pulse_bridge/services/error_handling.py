"""
Route exception handling: retry predicate, redelivery with backoff,
dead-lettering and exception logging.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..domain.exchange import Exchange, MESSAGE_ID
from ..domain.ports import (
    CommandRuntimeError,
    ConfigurationStateError,
    DeadLetterSender,
    HttpOperationFailedError
)
from ..telemetry.logger import MetricsLogger


logger = logging.getLogger(__name__)

ExchangeStep = Callable[[Exchange], Awaitable[None]]

# Property holding the business message id read from the payload
MESSAGE_ID_PROPERTY = "messageID"


class HttpExceptionRetryPredicate:
    """
    Decides whether a failed HTTP call is worth another attempt.

    400, 403 and 409 responses are never retried, whether raised directly or
    wrapped in a CommandRuntimeError.
    """

    NON_RETRIABLE_STATUS_CODES = ("statusCode: 400", "statusCode: 403", "statusCode: 409")

    def __call__(self, exception: BaseException) -> bool:
        return self.matches(exception)

    def matches(self, exception: Optional[BaseException]) -> bool:
        if isinstance(exception, CommandRuntimeError) and self._is_non_retriable_cause(exception):
            return False
        if isinstance(exception, HttpOperationFailedError) and self._is_status_code_non_retriable(exception):
            return False
        return True

    def _is_non_retriable_cause(self, exception: CommandRuntimeError) -> bool:
        cause = exception.cause
        return isinstance(cause, HttpOperationFailedError) and self._is_status_code_non_retriable(cause)

    def _is_status_code_non_retriable(self, exception: BaseException) -> bool:
        message = str(exception)
        return any(code in message for code in self.NON_RETRIABLE_STATUS_CODES)


@dataclass
class RedeliveryPolicy:
    """Redelivery count and exponential backoff between attempts."""

    max_redeliveries: int = 5
    redelivery_delay_ms: int = 2000
    back_off_multiplier: int = 2
    maximum_redelivery_delay_ms: int = 60000

    @classmethod
    def resolve(cls, redelivery_config) -> "RedeliveryPolicy":
        """
        Build the policy from the ``redelivery`` config section.

        The deprecated ``sqs_*`` values are used instead of their current
        counterparts when they are greater than zero.
        """
        c = redelivery_config
        return cls(
            max_redeliveries=c.sqs_max_redelivery_count if c.sqs_max_redelivery_count > 0 else c.max_redelivery_count,
            redelivery_delay_ms=c.sqs_redelivery_delay_ms if c.sqs_redelivery_delay_ms > 0 else c.redelivery_delay_ms,
            back_off_multiplier=c.sqs_back_off_multiplier if c.sqs_back_off_multiplier > 0 else c.back_off_multiplier,
            maximum_redelivery_delay_ms=c.maximum_redelivery_delay_ms
        )

    def delay_for(self, attempt: int) -> int:
        """
        Delay before redelivery ``attempt`` (1-based), in milliseconds.
        """
        delay = self.redelivery_delay_ms * (self.back_off_multiplier ** max(attempt - 1, 0))
        return min(delay, self.maximum_redelivery_delay_ms)


def _describe(exception: BaseException) -> str:
    return f"{exception.__class__.__name__}: {exception}"


def root_cause(exception: Optional[BaseException]) -> Optional[BaseException]:
    """
    Follow the cause chain to its end.

    Returns:
        The innermost cause, or None when the exception has no cause
    """
    if exception is None:
        return None

    seen = {id(exception)}
    cause = None
    current = exception
    while True:
        nxt = getattr(current, "cause", None) or current.__cause__
        if nxt is None or id(nxt) in seen:
            return cause
        seen.add(id(nxt))
        cause = current = nxt


class ExceptionLoggingProcessor:
    """
    Logs the exception caught by a route, with its root cause and the HTTP
    response body when the failure came from an HTTP call.
    """

    EXCEPTION_CAUGHT_MESSAGE = "Camel exception caught: {}"
    RESPONSE_BODY_MESSAGE = " Response body: {}"
    CAUSE_EXCEPTION_MESSAGE = " Cause: {}"

    def __call__(self, exchange: Exchange) -> None:
        self.process(exchange)

    def process(self, exchange: Exchange) -> None:
        caught = exchange.exception
        if caught is None:
            return
        cause = root_cause(caught)

        if isinstance(caught, HttpOperationFailedError):
            message = (self.EXCEPTION_CAUGHT_MESSAGE + self.RESPONSE_BODY_MESSAGE).format(
                _describe(caught), caught.response_body
            )
        elif isinstance(cause, HttpOperationFailedError):
            message = (self.EXCEPTION_CAUGHT_MESSAGE + self.CAUSE_EXCEPTION_MESSAGE + self.RESPONSE_BODY_MESSAGE).format(
                _describe(caught), _describe(cause), cause.response_body
            )
        elif cause is not None:
            message = (self.EXCEPTION_CAUGHT_MESSAGE + self.CAUSE_EXCEPTION_MESSAGE).format(
                _describe(caught), _describe(cause)
            )
        else:
            message = self.EXCEPTION_CAUGHT_MESSAGE.format(_describe(caught))

        logger.error(message, extra={"component": "exception_logging", "route_id": exchange.route_id})


class _ExchangeCheckpoint:
    """Exchange state at the start of a guarded step, restored before each redelivery."""

    def __init__(self, exchange: Exchange):
        self.body = exchange.body
        self.headers = copy.deepcopy(exchange.headers)
        self.properties = dict(exchange.properties)

    def restore(self, exchange: Exchange) -> None:
        exchange.body = self.body
        exchange.headers = copy.deepcopy(self.headers)
        exchange.properties = dict(self.properties)


class ExceptionHandler:
    """
    Exception handling shared by the Pulse routes.

    ``HttpOperationFailedError`` and ``CommandRuntimeError`` are redelivered
    with exponential backoff unless the retry predicate rejects them; any
    other exception fails at once. On final failure the trace headers are
    refreshed, the original message is restored and logged, and the message
    is sent to ``dlq_name`` when one is set.
    """

    def __init__(
        self,
        policy: RedeliveryPolicy,
        trace_processor: Callable[[Exchange], None],
        dlq_sender: Optional[DeadLetterSender] = None,
        dlq_name: Optional[str] = None,
        handled: bool = False,
        metrics: Optional[MetricsLogger] = None
    ):
        """
        Initialize exception handler.

        Args:
            policy: Redelivery count and backoff
            trace_processor: Refreshes X-B3 headers before logging
            dlq_sender: Sender used when dlq_name is set
            dlq_name: Queue name (not URL) receiving failed messages
            handled: Swallow the failure after dead-lettering instead of re-raising
            metrics: Metrics logger

        Raises:
            ConfigurationStateError: If any redelivery value is negative
        """
        if policy.max_redeliveries < 0 or policy.redelivery_delay_ms < 0 or policy.back_off_multiplier < 0:
            raise ConfigurationStateError(
                f"Queue properties have not been set in {self.__class__.__name__}. "
                "Call initialize(int maxRedeliveryCount, long redeliveryDelayMs, int backOffMultiplier) "
                "prior to calling configure()."
            )
        if dlq_name and dlq_sender is None:
            raise ConfigurationStateError(f"A dead letter sender is required to route failures to {dlq_name}")

        self.policy = policy
        self.trace_processor = trace_processor
        self.dlq_sender = dlq_sender
        self.dlq_name = dlq_name or None
        self.handled = handled
        self.metrics = metrics or MetricsLogger()
        self.retry_predicate = HttpExceptionRetryPredicate()
        self.exception_logger = ExceptionLoggingProcessor()

    def is_retriable(self, exception: BaseException) -> bool:
        if not isinstance(exception, (HttpOperationFailedError, CommandRuntimeError)):
            return False
        return self.retry_predicate.matches(exception)

    async def run(self, exchange: Exchange, step: ExchangeStep) -> None:
        """
        Run ``step`` with redelivery and failure handling.

        Raises:
            Exception: The final failure, unless the handler is ``handled``
        """
        checkpoint = _ExchangeCheckpoint(exchange)
        attempt = 0
        while True:
            try:
                await step(exchange)
                return
            except Exception as e:
                exchange.exception = e
                retriable = self.is_retriable(e)

                if retriable and attempt < self.policy.max_redeliveries:
                    attempt += 1
                    delay_ms = self.policy.delay_for(attempt)
                    logger.warning(
                        f"Failed delivery for (MessageId: {exchange.get_header(MESSAGE_ID)}). "
                        f"On delivery attempt: {attempt - 1} caught: {_describe(e)}. "
                        f"Redelivering in {delay_ms} ms",
                        extra={"component": "exception_handler", "route_id": exchange.route_id}
                    )
                    await asyncio.sleep(delay_ms / 1000.0)
                    checkpoint.restore(exchange)
                    continue

                if retriable:
                    logger.error(
                        f"Failed delivery for (MessageId: {exchange.get_header(MESSAGE_ID)}). "
                        f"Exhausted after delivery attempt: {attempt + 1} caught: {_describe(e)}",
                        extra={"component": "exception_handler", "route_id": exchange.route_id}
                    )

                await self.on_failure(exchange)
                if self.handled:
                    return
                raise

    async def on_failure(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        exchange.use_original_message()
        self.exception_logger.process(exchange)

        if self.dlq_name:
            message_id = await self.dlq_sender.send(self.dlq_name, exchange)
            self.metrics.log_dead_lettered(exchange.route_id or "", self.dlq_name, message_id)


class AppRoutePolicy:
    """
    Error policy for the application routes: fixed-delay redelivery of any
    exception, then an error log and re-raise so the queue's redrive policy
    moves the message to its dead letter queue.
    """

    def __init__(
        self,
        app_name: str,
        max_redelivery_count: int = 5,
        redelivery_delay_ms: int = 2000
    ):
        self.app_name = app_name
        self.max_redelivery_count = max_redelivery_count
        self.redelivery_delay_ms = redelivery_delay_ms
        self.exception_logger = ExceptionLoggingProcessor()

    @classmethod
    def from_config(cls, config) -> "AppRoutePolicy":
        return cls(
            app_name=config.app.name,
            max_redelivery_count=config.redelivery.max_redelivery_count,
            redelivery_delay_ms=config.redelivery.redelivery_delay_ms
        )

    async def run(self, exchange: Exchange, step: ExchangeStep) -> None:
        """
        Raises:
            Exception: The last failure once redeliveries are exhausted
        """
        checkpoint = _ExchangeCheckpoint(exchange)
        attempt = 0
        while True:
            try:
                await step(exchange)
                return
            except Exception as e:
                exchange.exception = e
                if attempt < self.max_redelivery_count:
                    attempt += 1
                    logger.info(
                        f"Failed delivery for (MessageId: {exchange.get_header(MESSAGE_ID)}). "
                        f"On delivery attempt: {attempt - 1} caught: {_describe(e)}",
                        extra={"component": "route_policy", "route_id": exchange.route_id}
                    )
                    await asyncio.sleep(self.redelivery_delay_ms / 1000.0)
                    checkpoint.restore(exchange)
                    continue

                logger.error(
                    f"ErrorType=GeneralException ErrorMsg=Exception occurred in {self.app_name} "
                    f"while processing the request for id = {exchange.get_property(MESSAGE_ID_PROPERTY)}, "
                    "moving message to DLQ",
                    extra={"component": "route_policy", "route_id": exchange.route_id}
                )
                exchange.use_original_message()
                self.exception_logger.process(exchange)
                raise
