"""End-to-end webhook flows with a fake LINE client and fake browser."""

import asyncio
import base64
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from auction_bot.api.webhook import WebhookHandler, get_handler
from auction_bot.core.config import settings
from auction_bot.core.errors import AuthFailure
from auction_bot.main import app
from auction_bot.services.auction_driver import AuctionDriver
from auction_bot.services.conversation import ACK_MESSAGE, BUSY_MESSAGE, SLOT_REGISTRY, ConversationManager
from auction_bot.services.delivery import GENERIC_FAILURE_MESSAGE, NO_RESULTS_MESSAGE
from auction_bot.services.job_coordinator import JobCoordinator
from auction_bot.services.models import ListingRecord, SessionState
from auction_bot.services.stores import InMemoryStore
from fakes import FakeBrowserAgent, FakeLineClient

SLOTS = ["maker", "model", "budget", "mileage"]
ANSWERS = ["検索", "トヨタ", "ヤリス", "100万", "5万km"]

class StaticDriver:
    def __init__(self, records=None, error=None, delay: float = 0):
        self.records = records or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def run(self, criteria, user_id=None):
        self.calls.append(criteria)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.records

def make_handler(driver, settings_override=None):
    conversation = ConversationManager(SLOTS, store=InMemoryStore())
    coordinator = JobCoordinator(driver, on_finished=conversation.finish_dispatch, config=settings_override)
    return WebhookHandler(conversation, coordinator, FakeLineClient(), seen_events=InMemoryStore())

_counter = iter(range(1, 10_000))

def text_event(text, user_id="U1", event_id=None):
    n = next(_counter)
    return {
        "type": "message",
        "webhookEventId": event_id or f"evt-{n}",
        "replyToken": f"token-{n}",
        "source": {"type": "user", "userId": user_id},
        "message": {"type": "text", "id": str(n), "text": text},
    }

async def converse(handler, texts, user_id="U1"):
    for text in texts:
        await handler.handle_payload({"events": [text_event(text, user_id)]})

def reply_texts(line):
    return [e[2][0]["text"] for e in line.replies()]

@pytest.mark.asyncio
async def test_successful_search_acks_then_pushes_once():
    records = [
        ListingRecord(title="トヨタ ヤリス X", price_text="88万円", price_sort_key=880000,
                      detail_url="https://auction.test/detail/1"),
        ListingRecord(title="トヨタ ヤリス G", price_text="95万円", price_sort_key=950000),
    ]
    driver = StaticDriver(records=records)
    handler = make_handler(driver)
    line = handler.line_client

    await converse(handler, ANSWERS)
    await handler.coordinator.join("U1")

    assert reply_texts(line)[-1] == ACK_MESSAGE
    kinds = [e[0] for e in line.events]
    assert kinds.index("push") > kinds.index("reply")
    pushes = line.pushes("U1")
    assert len(pushes) == 1
    body = "\n".join(m["text"] for m in pushes[0][2])
    assert "トヨタ ヤリス X" in body
    assert body.index("88万円") < body.index("95万円")
    assert driver.calls[0].budget_yen == 1000000
    assert driver.calls[0].mileage_km == 50000
    assert handler.conversation.state_of("U1") is SessionState.IDLE

@pytest.mark.asyncio
async def test_auth_failure_pushes_generic_failure_and_clears_session(fast_settings):
    agent = FakeBrowserAgent()
    driver = AuctionDriver(fast_settings, browser_factory=lambda config: agent)
    handler = make_handler(driver, fast_settings)

    await converse(handler, ANSWERS)
    await handler.coordinator.join("U1")

    pushes = handler.line_client.pushes("U1")
    assert len(pushes) == 1
    assert pushes[0][2] == [{"type": "text", "text": GENERIC_FAILURE_MESSAGE}]
    assert agent.closed == 1
    assert handler.conversation.state_of("U1") is SessionState.IDLE

@pytest.mark.asyncio
async def test_empty_result_pushes_no_results_notice():
    handler = make_handler(StaticDriver(records=[]))

    await converse(handler, ANSWERS)
    await handler.coordinator.join("U1")

    pushes = handler.line_client.pushes("U1")
    assert pushes[0][2] == [{"type": "text", "text": NO_RESULTS_MESSAGE}]

@pytest.mark.asyncio
async def test_message_while_running_gets_busy_reply_and_no_new_job():
    driver = StaticDriver(delay=0.05)
    handler = make_handler(driver)

    await converse(handler, ANSWERS)
    await converse(handler, ["まだですか"])
    await handler.coordinator.join("U1")

    assert reply_texts(handler.line_client)[-1] == BUSY_MESSAGE
    assert len(driver.calls) == 1
    assert len(handler.line_client.pushes("U1")) == 1

@pytest.mark.asyncio
async def test_reset_and_complete_while_running_does_not_start_second_job():
    driver = StaticDriver(delay=0.05)
    handler = make_handler(driver)

    await converse(handler, ANSWERS)
    await converse(handler, ["リセット"] + ANSWERS[1:])
    assert handler.conversation.state_of("U1") is SessionState.IDLE
    assert handler.coordinator.is_running("U1")
    await handler.coordinator.join("U1")

    assert reply_texts(handler.line_client)[-1] == BUSY_MESSAGE
    assert len(driver.calls) == 1
    assert handler.conversation.state_of("U1") is SessionState.IDLE

@pytest.mark.asyncio
async def test_duplicate_event_is_processed_once():
    handler = make_handler(StaticDriver())
    event = text_event("こんにちは", event_id="evt-dup")

    await handler.handle_payload({"events": [event]})
    await handler.handle_payload({"events": [event]})

    assert reply_texts(handler.line_client) == [SLOT_REGISTRY["maker"].question]

@pytest.mark.asyncio
async def test_non_text_events_are_ignored():
    handler = make_handler(StaticDriver())
    sticker = text_event("")
    sticker["message"] = {"type": "sticker", "id": "1"}
    follow = {"type": "follow", "replyToken": "t", "source": {"userId": "U1"}}

    await handler.handle_payload({"events": [sticker, follow]})

    assert handler.line_client.events == []

@pytest.mark.asyncio
async def test_bad_event_does_not_stop_batch():
    handler = make_handler(StaticDriver())
    bad = text_event("hi")
    bad["message"]["text"] = None

    await handler.handle_payload({"events": [{"type": "message", "message": "oops"}, bad, text_event("hi", "U2")]})

    assert len(handler.line_client.replies()) == 2

class BrokenAckLineClient(FakeLineClient):
    async def reply(self, reply_token, messages):
        if messages[0]["text"] == ACK_MESSAGE:
            raise RuntimeError("reply token already used")
        await super().reply(reply_token, messages)

@pytest.mark.asyncio
async def test_failed_ack_still_runs_search():
    driver = StaticDriver(records=[])
    handler = make_handler(driver)
    handler.line_client = BrokenAckLineClient()

    await converse(handler, ANSWERS)
    assert handler.coordinator.is_running("U1")
    await handler.coordinator.join("U1")

    assert len(driver.calls) == 1
    assert handler.line_client.pushes("U1")[0][2] == [{"type": "text", "text": NO_RESULTS_MESSAGE}]
    assert handler.conversation.state_of("U1") is SessionState.IDLE

# --- HTTP surface ------------------------------------------------------------------

@pytest.fixture
def client():
    handler = make_handler(StaticDriver())
    app.dependency_overrides[get_handler] = lambda: handler
    yield TestClient(app), handler
    app.dependency_overrides.clear()

def sign(secret: str, body: bytes) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()

def test_health(client):
    http, _ = client
    assert http.get("/health").json() == {"status": "healthy"}

def test_webhook_accepts_event(client):
    http, handler = client

    response = http.post("/webhook", json={"events": [text_event("こんにちは")]})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert reply_texts(handler.line_client) == [SLOT_REGISTRY["maker"].question]

def test_webhook_verification_request_with_no_events(client):
    http, handler = client

    response = http.post("/webhook", json={"destination": "Uxxxx", "events": []})

    assert response.status_code == 200
    assert handler.line_client.events == []

def test_malformed_body_is_acknowledged(client):
    http, handler = client

    response = http.post("/webhook", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}

@pytest.mark.parametrize("body", [b"[]", b"\"events\"", b'{"events": null}', b'{"events": {"type": "message"}}'])
def test_non_batch_json_is_acknowledged(client, body):
    http, handler = client

    response = http.post("/webhook", content=body, headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert handler.line_client.events == []

def test_signature_checked_when_secret_configured(client, monkeypatch):
    http, handler = client
    monkeypatch.setattr(settings, "line_channel_secret", "channel-secret")
    body = json.dumps({"events": [text_event("こんにちは")]}).encode()

    rejected = http.post("/webhook", content=body, headers={"x-line-signature": "bogus"})
    assert rejected.status_code == 200
    assert rejected.json() == {"status": "ignored"}
    assert handler.line_client.events == []

    accepted = http.post("/webhook", content=body,
                         headers={"x-line-signature": sign("channel-secret", body)})
    assert accepted.json() == {"status": "ok"}
    assert len(handler.line_client.replies()) == 1
