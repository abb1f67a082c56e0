"""
Tests for the POST /v2/webhooks/messages endpoint and the simulated
inbound UI endpoint.

Tests cover:
- Enveloped (event-style) inbound payloads
- Flat inbound payloads with 'to' as string or array
- Missing from/to (400) and malformed JSON (400)
- Lenient text/media handling
- Persistence with direction "inbound"
"""

import pytest


def envelope(**payload) -> dict:
    return {"data": {"event_type": "message.received", "payload": payload}}


def stored_messages(client) -> list:
    return client.get("/api/messages").json()


class TestInboundEnvelopeFormat:
    """Test event-envelope inbound payloads."""

    def test_envelope_with_id(self, client):
        body = envelope(
            id="in-1",
            **{"from": "+15550001111"},
            to="+15552223333",
            text="Hello from a phone",
            media_urls=["http://x/a.jpg"],
            messaging_profile_id="profile-9",
        )

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        stored = stored_messages(client)
        assert len(stored) == 1
        assert stored[0]["id"] == "in-1"
        assert stored[0]["direction"] == "inbound"
        assert stored[0]["sender"] == "+15550001111"
        assert stored[0]["recipient"] == "+15552223333"
        assert stored[0]["content"] == "Hello from a phone"
        assert stored[0]["media_urls"] == ["http://x/a.jpg"]
        assert stored[0]["messaging_profile_id"] == "profile-9"

    def test_envelope_without_id_gets_one(self, client):
        body = envelope(**{"from": "+15550001111"}, to="+15552223333", text="hi")

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 200
        assert stored_messages(client)[0]["id"]

    def test_envelope_with_phone_number_objects(self, client):
        """Test provider-style from/to objects inside the envelope."""
        body = envelope(
            **{"from": {"phone_number": "+15550001111", "carrier": "X"}},
            to=[{"phone_number": "+15552223333"}],
            text="hi",
        )

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 200
        stored = stored_messages(client)[0]
        assert stored["sender"] == "+15550001111"
        assert stored["recipient"] == "+15552223333"

    def test_envelope_missing_to(self, client):
        body = envelope(**{"from": "+15550001111"}, text="hi")

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "10005"

    def test_duplicate_envelope_id_fails_to_save(self, client):
        body = envelope(id="in-dup", **{"from": "+15550001111"}, to="+15552223333", text="hi")

        first = client.post("/v2/webhooks/messages", json=body)
        second = client.post("/v2/webhooks/messages", json=body)

        assert first.status_code == 200
        assert second.status_code == 500
        error = second.json()["errors"][0]
        assert error["code"] == "10000"
        assert error["detail"] == "[SmsSink] Failed to save message."
        assert len(stored_messages(client)) == 1

    def test_envelope_without_text_or_media_is_accepted(self, client):
        body = envelope(**{"from": "+15550001111"}, to="+15552223333")

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 200
        assert stored_messages(client)[0]["media_urls"] == []


class TestInboundFlatFormat:
    """Test flat inbound payloads."""

    @pytest.mark.parametrize("to", ["+15552223333", ["+15552223333"]])
    def test_flat_message(self, client, to):
        body = {"from": "+15550001111", "to": to, "text": "flat", "messaging_profile_id": "p1"}

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 200
        stored = stored_messages(client)[0]
        assert stored["direction"] == "inbound"
        assert stored["recipient"] == "+15552223333"
        assert stored["messaging_profile_id"] == "p1"

    def test_no_authentication_required(self, client):
        response = client.post(
            "/v2/webhooks/messages",
            json={"from": "+1", "to": "+2"},
            headers={"Authorization": "Bearer definitely-wrong"},
        )

        assert response.status_code == 200

    @pytest.mark.parametrize("body", [{"to": "+2", "text": "x"}, {"from": "+1", "text": "x"}, {"from": "", "to": ""}])
    def test_missing_from_or_to(self, client, body):
        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 400
        assert response.json()["errors"][0]["detail"] == "[SmsSink] The 'from' and 'to' parameters are required."
        assert stored_messages(client) == []

    def test_envelope_with_empty_from_falls_back_to_flat(self, client):
        """Test an envelope lacking 'from' is not recognized and the flat shape is used."""
        body = envelope(to="+15552223333", text="hi")

        response = client.post("/v2/webhooks/messages", json=body)

        assert response.status_code == 400

    def test_invalid_json(self, client):
        response = client.post(
            "/v2/webhooks/messages",
            content="not valid json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "10005"

    def test_failures_are_logged(self, client):
        client.post("/v2/webhooks/messages", json={"text": "orphan"})

        logs = client.get("/api/logs", params={"category": "webhook", "level": "error"}).json()

        assert logs[0]["message"] == "Missing required fields in webhook"


class TestSimulateInbound:
    """Test POST /api/messages/inbound."""

    def test_simulate_inbound(self, client):
        body = {"from": "+15550001111", "to": "+15552223333", "text": "simulated"}

        response = client.post("/api/messages/inbound", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["id"]
        assert data["from"] == "+15550001111"
        assert data["to"] == "+15552223333"
        assert data["text"] == "simulated"
        assert data["media_urls"] == []
        assert data["direction"] == "inbound"
        assert data["created_at"].endswith("Z")
        assert stored_messages(client)[0]["id"] == data["id"]

    def test_simulate_requires_text_or_media(self, client):
        response = client.post("/api/messages/inbound", json={"from": "+1", "to": "+2"})

        assert response.status_code == 400
        assert response.json()["errors"][0]["detail"] == "[SmsSink] Either 'text' or 'media_urls' parameter is required."

    def test_simulate_requires_from_and_to(self, client):
        response = client.post("/api/messages/inbound", json={"from": "+1", "text": "x"})

        assert response.status_code == 400
