"""
Delivery-status callbacks for outbound messages.

After a message is accepted the provider reports its progress to the
client's webhook_url: message.sent at +500ms, then message.delivered at
+1500ms, both measured from the start of the sequence. Each event is tried
once against webhook_url and, if that fails, once against
webhook_failover_url. Outcomes are logged and counted, never reported to
the client that sent the message.

Sequences run as detached asyncio tasks. They are not persisted: pending
events are dropped when the process stops.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import httpx
from starlette.concurrency import run_in_threadpool

from smssink.config import settings
from smssink.metrics import record_callback_outcome
from smssink.schemas import (
    MOCK_CARRIER,
    MOCK_LINE_TYPE,
    CallbackEvent,
    CallbackEventData,
    CallbackPayload,
    PhoneNumber,
    Recipient,
)
from smssink.storage import record_log
from smssink.utils import format_timestamp, utc_now

logger = logging.getLogger(__name__)

USER_AGENT = "SmsSink/1.0"
# Placeholder; not a verifiable ed25519 signature
MOCK_SIGNATURE = "mock-signature"


@dataclass(frozen=True)
class MessageDetails:
    """What the dispatcher needs to know about a sent message."""
    id: str
    sender: str
    recipient: str
    text: str
    messaging_profile_id: str
    message_type: str
    media_urls: List[str] = field(default_factory=list)
    webhook_url: str = ""
    webhook_failover_url: str = ""


@dataclass(frozen=True)
class StatusStep:
    event_type: str
    status: str
    delay: float  # seconds from the start of the sequence


STATUS_SEQUENCE = (
    StatusStep("message.sent", "sent", 0.5),
    StatusStep("message.delivered", "delivered", 1.5),
)


class WebhookDeliveryError(Exception):
    """The webhook endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int):
        super().__init__(f"webhook returned non-2xx status {status_code}")
        self.status_code = status_code


# asyncio.TimeoutError: the whole attempt outran the timeout
DELIVERY_ERRORS = (httpx.HTTPError, httpx.InvalidURL, WebhookDeliveryError, asyncio.TimeoutError)


def build_callback_event(
    details: MessageDetails,
    step: StatusStep,
    occurred_at: datetime,
    sent_at: Optional[datetime] = None,
) -> CallbackEvent:
    """
    Build the event body for one status step.

    "sent" carries sent_at; "delivered" carries sent_at (the time of the
    sent step) and completed_at.
    """
    payload = CallbackPayload(
        id=details.id,
        messaging_profile_id=details.messaging_profile_id,
        from_number=PhoneNumber(phone_number=details.sender, carrier=MOCK_CARRIER, line_type=MOCK_LINE_TYPE),
        to=[
            Recipient(
                phone_number=details.recipient,
                carrier=MOCK_CARRIER,
                line_type=MOCK_LINE_TYPE,
                status=step.status,
            )
        ],
        text=details.text,
        media=list(details.media_urls),
        type=details.message_type,
        status=step.status,
    )

    if step.status == "sent":
        payload.sent_at = format_timestamp(occurred_at)
    elif step.status == "delivered":
        payload.sent_at = format_timestamp(sent_at or occurred_at)
        payload.completed_at = format_timestamp(occurred_at)

    return CallbackEvent(
        data=CallbackEventData(
            event_type=step.event_type,
            id=str(uuid.uuid4()),
            occurred_at=format_timestamp(occurred_at),
            payload=payload,
        )
    )


class CallbackDispatcher:
    """
    Schedules status callback sequences.

    Args:
        timeout: Per-attempt HTTP timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
        steps: Ordered status steps with cumulative delays
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        steps: Sequence[StatusStep] = STATUS_SEQUENCE,
    ):
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self.steps = tuple(steps)
        self._transport = transport
        # Strong references so running sequences are not garbage collected
        self._tasks: set = set()

    @property
    def pending(self) -> int:
        """Number of sequences still running."""
        return len(self._tasks)

    async def schedule(self, details: MessageDetails) -> None:
        """
        Start the callback sequence for a message and return without
        waiting for it. Does nothing when the message has no webhook_url.
        """
        if not details.webhook_url:
            return

        task = asyncio.create_task(self.run(details), name=f"callbacks-{details.id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Scheduled status callbacks for message {details.id}")

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Callback sequence {task.get_name()} crashed: {exc!r}")

    def abandon(self) -> int:
        """Cancel every running sequence (used at shutdown). Returns how many were dropped."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Abandoned {len(tasks)} in-flight callback sequences")
        return len(tasks)

    async def run(self, details: MessageDetails) -> None:
        """Run the whole sequence for one message in the current task."""
        started_at = utc_now()
        elapsed = 0.0
        sent_at = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for step in self.steps:
                # Delays are cumulative; sleep only the gap since the previous step
                await asyncio.sleep(max(step.delay - elapsed, 0.0))
                elapsed = step.delay

                occurred_at = started_at + timedelta(seconds=step.delay)
                if step.status == "sent":
                    sent_at = occurred_at

                event = build_callback_event(details, step, occurred_at, sent_at)
                await self.deliver(client, details, event)

    async def deliver(self, client: httpx.AsyncClient, details: MessageDetails, event: CallbackEvent) -> str:
        """
        Deliver one event: primary URL first, failover URL once on failure.

        Returns:
            "delivered", "failover" or "failed"
        """
        body = event.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
        event_type = event.data.event_type
        log_details = {"event_type": event_type, "message_id": details.id}

        try:
            await self._post(client, details.webhook_url, body)
        except DELIVERY_ERRORS as e:
            logger.warning(f"Webhook: primary URL failed ({details.webhook_url}): {e}")
            await self._log("warning", "Primary webhook URL failed",
                            {**log_details, "url": details.webhook_url, "error": str(e)})
        else:
            logger.info(f"Webhook: sent {event_type} for message {details.id} to {details.webhook_url}")
            await self._log("info", "Webhook sent successfully", {**log_details, "url": details.webhook_url})
            record_callback_outcome(event_type, "delivered")
            return "delivered"

        if not details.webhook_failover_url:
            record_callback_outcome(event_type, "failed")
            return "failed"

        try:
            await self._post(client, details.webhook_failover_url, body)
        except DELIVERY_ERRORS as e:
            logger.error(f"Webhook: failover URL also failed ({details.webhook_failover_url}): {e}")
            await self._log("error", "Failover webhook URL also failed",
                            {**log_details, "url": details.webhook_failover_url, "error": str(e)})
            record_callback_outcome(event_type, "failed")
            return "failed"

        logger.info(f"Webhook: sent {event_type} for message {details.id} to failover {details.webhook_failover_url}")
        await self._log("info", "Webhook sent to failover URL",
                        {**log_details, "url": details.webhook_failover_url})
        record_callback_outcome(event_type, "failover")
        return "failover"

    async def _log(self, level: str, message: str, details: dict) -> None:
        # SQLite commits block, so keep them off the event loop
        await run_in_threadpool(record_log, level, "webhook", message, details)

    async def _post(self, client: httpx.AsyncClient, url: str, body: bytes) -> None:
        """POST one event; the timeout bounds the whole attempt, not each httpx phase."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "telnyx-timestamp": str(int(time.time())),
            "telnyx-signature-ed25519": MOCK_SIGNATURE,
        }
        response = await asyncio.wait_for(client.post(url, content=body, headers=headers), self.timeout)
        if not response.is_success:
            raise WebhookDeliveryError(response.status_code)


# Process-wide dispatcher used by the API
dispatcher = CallbackDispatcher()


def get_dispatcher() -> CallbackDispatcher:
    """Dependency returning the callback dispatcher."""
    return dispatcher
