"""
Tests for slot offer delivery
"""

import pytest
from unittest.mock import MagicMock
from uuid import uuid4

from app.services.notification_service import (
    DeliveryResult,
    NotificationChannel,
    NotificationDispatcher,
    PushChannel,
    SMSChannel,
    format_offer_message,
)


def offer_payload(**overrides):
    payload = {
        "entry_id": str(uuid4()),
        "slot_id": str(uuid4()),
        "salon_name": "Test Salon",
        "service_name": "Haircut",
        "slot_date": "2030-03-05",
        "slot_time": "11:00",
        "response_deadline": "09:15",
        "phone": "+919876543210",
    }
    payload.update(overrides)
    return payload


class BrokenChannel(NotificationChannel):
    name = "broken"

    async def send(self, customer_id, payload):
        raise ConnectionError("gateway timeout")


@pytest.mark.unit
class TestOfferMessage:

    def test_message_mentions_slot_and_deadline(self):
        message = format_offer_message(offer_payload())

        assert "Test Salon" in message
        assert "Haircut" in message
        assert "2030-03-05 at 11:00" in message
        assert "Respond by 09:15" in message


@pytest.mark.asyncio
class TestSMSChannel:

    async def test_sends_through_twilio(self):
        client = MagicMock()
        client.messages.create.return_value = MagicMock(sid="SM123")
        channel = SMSChannel(client=client, from_number="+15005550006")

        result = await channel.send(uuid4(), offer_payload(message="Slot open"))

        assert result == DeliveryResult(success=True, channel="sms", message_id="SM123")
        client.messages.create.assert_called_once_with(
            body="Slot open", from_="+15005550006", to="+919876543210"
        )

    @pytest.mark.parametrize("phone", [None, "", "9876543210", "+91-98765", "+12345"])
    async def test_rejects_invalid_phone(self, phone):
        client = MagicMock()
        channel = SMSChannel(client=client, from_number="+15005550006")

        result = await channel.send(uuid4(), offer_payload(phone=phone, message="Slot open"))

        assert result.success is False
        client.messages.create.assert_not_called()


@pytest.mark.asyncio
class TestNotificationDispatcher:

    async def test_push_delivery_fills_message(self):
        dispatcher = NotificationDispatcher(channels={"push": PushChannel()})
        payload = offer_payload()

        result = await dispatcher.send(uuid4(), "push", payload)

        assert result.success is True
        assert result.channel == "push"
        assert result.message_id
        assert payload["message"] == format_offer_message(payload)

    async def test_unknown_channel(self):
        dispatcher = NotificationDispatcher(channels={"push": PushChannel()})

        result = await dispatcher.send(uuid4(), "email", offer_payload())

        assert result.success is False
        assert result.error == "channel not configured"

    async def test_channel_errors_are_reported(self):
        dispatcher = NotificationDispatcher(channels={"broken": BrokenChannel()})

        result = await dispatcher.send(uuid4(), "broken", offer_payload())

        assert result.success is False
        assert "gateway timeout" in result.error

    async def test_sms_failure_is_reported(self):
        client = MagicMock()
        client.messages.create.side_effect = RuntimeError("unverified number")
        dispatcher = NotificationDispatcher(
            channels={"sms": SMSChannel(client=client, from_number="+15005550006")}
        )

        result = await dispatcher.send(uuid4(), "sms", offer_payload())

        assert result.success is False
        assert result.channel == "sms"

    async def test_default_channels_without_twilio(self):
        dispatcher = NotificationDispatcher()
        assert list(dispatcher.channels) == ["push"]
