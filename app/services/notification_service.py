"""
Slot offer delivery
Routes waitlist offers to a delivery channel (push or SMS via Twilio)
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import asyncio
import logging
import uuid

from twilio.rest import Client

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    channel: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationChannel:
    """A transport that can deliver an offer to a customer"""

    name = "base"

    async def send(self, customer_id: uuid.UUID, payload: Dict[str, Any]) -> DeliveryResult:
        raise NotImplementedError


class PushChannel(NotificationChannel):
    """
    Push delivery. Hands the offer to the platform push gateway, which
    consumes the structured log record.
    """

    name = "push"

    async def send(self, customer_id: uuid.UUID, payload: Dict[str, Any]) -> DeliveryResult:
        message_id = str(uuid.uuid4())
        logger.info(
            f"Push offer to {customer_id}: {payload['message']}",
            extra={"entry_id": payload.get("entry_id"), "slot_id": payload.get("slot_id")}
        )
        return DeliveryResult(success=True, channel=self.name, message_id=message_id)


class SMSChannel(NotificationChannel):
    """SMS delivery through Twilio"""

    name = "sms"

    def __init__(self, client: Optional[Client] = None, from_number: Optional[str] = None):
        self.client = client or Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER

    async def send(self, customer_id: uuid.UUID, payload: Dict[str, Any]) -> DeliveryResult:
        to_number = payload.get("phone")
        if not to_number or not self._validate_phone_number(to_number):
            return DeliveryResult(
                success=False,
                channel=self.name,
                error=f"Invalid phone number: {to_number}"
            )

        # Twilio's client is blocking
        message = await asyncio.to_thread(
            self.client.messages.create,
            body=payload["message"],
            from_=self.from_number,
            to=to_number
        )

        logger.info(f"SMS sent to {to_number}: {message.sid}")
        return DeliveryResult(success=True, channel=self.name, message_id=message.sid)

    def _validate_phone_number(self, phone_number: str) -> bool:
        """Validate phone number format"""
        # Should start with + and contain only digits
        if not phone_number.startswith("+"):
            return False

        number_part = phone_number[1:]
        return number_part.isdigit() and 10 <= len(number_part) <= 15


def format_offer_message(payload: Dict[str, Any]) -> str:
    return (
        f"A slot just opened at {payload['salon_name']} for {payload['service_name']} "
        f"on {payload['slot_date']} at {payload['slot_time']}. "
        f"Respond by {payload['response_deadline']} to claim it."
    )


class NotificationDispatcher:
    """
    Delivers offers over the requested channel. Delivery is best effort:
    failures are logged and reported, never raised.
    """

    def __init__(self, channels: Optional[Dict[str, NotificationChannel]] = None):
        if channels is None:
            channels = {PushChannel.name: PushChannel()}
            if settings.sms_enabled:
                channels[SMSChannel.name] = SMSChannel()
        self.channels = channels

    async def send(
        self,
        customer_id: uuid.UUID,
        channel: str,
        payload: Dict[str, Any]
    ) -> DeliveryResult:
        transport = self.channels.get(channel)
        if transport is None:
            logger.error(f"No delivery channel '{channel}' configured")
            return DeliveryResult(success=False, channel=channel, error="channel not configured")

        payload.setdefault("message", format_offer_message(payload))

        try:
            result = await transport.send(customer_id, payload)
        except Exception as e:
            logger.error(
                f"Error delivering offer over {channel}: {e}",
                extra={"entry_id": payload.get("entry_id"), "slot_id": payload.get("slot_id")}
            )
            return DeliveryResult(success=False, channel=channel, error=str(e))

        if not result.success:
            logger.warning(f"Offer delivery over {channel} failed: {result.error}")
        return result
