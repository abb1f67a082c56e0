"""
Validation of outbound message requests.

validate_message_request() is a pure function of the Authorization header,
the parsed body and the stored API key. Checks run in a fixed order and the
first failure is raised; errors are never accumulated.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from smssink.errors import InvalidParameter, Unauthorized
from smssink.schemas import MessageRequest
from smssink.utils import verify_api_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedMessage:
    """An accepted outbound request with every field resolved to one shape."""
    sender: str
    recipient: str
    text: str
    messaging_profile_id: str
    media_urls: List[str] = field(default_factory=list)
    webhook_url: str = ""
    webhook_failover_url: str = ""
    use_profile_webhooks: Optional[bool] = None

    @property
    def message_type(self) -> str:
        return "MMS" if self.media_urls else "SMS"


def validate_message_request(
    auth_header: Optional[str],
    request: MessageRequest,
    api_key: str,
) -> NormalizedMessage:
    """
    Authorize and validate a send-message request.

    Args:
        auth_header: Raw Authorization header value (None when absent)
        request: Parsed request body
        api_key: Currently stored credential

    Returns:
        The normalized message

    Raises:
        Unauthorized: header missing or key mismatch (401, code 10001)
        InvalidParameter: required field missing (422, code 10005)
    """
    if not auth_header:
        raise Unauthorized("Authorization header is required.")

    if not verify_api_key(auth_header, api_key):
        raise Unauthorized("Invalid API key.")

    sender = request.from_number or ""
    if not sender:
        raise InvalidParameter("The 'from' parameter is required.")

    recipient = request.recipient()
    if not recipient:
        raise InvalidParameter("The 'to' parameter is required.")

    messaging_profile_id = request.messaging_profile_id or ""
    if not messaging_profile_id:
        raise InvalidParameter("The 'messaging_profile_id' parameter is required.")

    text = request.text or ""
    media_urls = list(request.media_urls or [])
    if not text and not media_urls:
        raise InvalidParameter("Either 'text' or 'media_urls' parameter is required.")

    logger.debug(f"Request validated: from={sender}, to={recipient}, media_count={len(media_urls)}")

    return NormalizedMessage(
        sender=sender,
        recipient=recipient,
        text=text,
        messaging_profile_id=messaging_profile_id,
        media_urls=media_urls,
        webhook_url=request.webhook_url or "",
        webhook_failover_url=request.webhook_failover_url or "",
        use_profile_webhooks=request.use_profile_webhooks,
    )
