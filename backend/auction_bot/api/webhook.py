from fastapi import APIRouter, Depends, Request
from auction_bot.core.config import settings
from auction_bot.core.logger import logger
from auction_bot.services.auction_driver import AuctionDriver
from auction_bot.services.conversation import BUSY_MESSAGE, ConversationManager, conversation_manager
from auction_bot.services.delivery import outcome_messages
from auction_bot.services.job_coordinator import JobCoordinator
from auction_bot.services.line_client import LineMessagingClient, text_message, verify_signature
from auction_bot.services.models import JobOutcome
from auction_bot.services.stores import InMemoryStore, KeyedStore
import httpx
import json


class WebhookHandler:
    """Routes LINE webhook events into the conversation and search jobs."""

    def __init__(
        self,
        conversation: ConversationManager,
        coordinator: JobCoordinator,
        line_client: LineMessagingClient,
        seen_events: KeyedStore = None,
    ):
        self.conversation = conversation
        self.coordinator = coordinator
        self.line_client = line_client
        self.seen_events: KeyedStore = seen_events if seen_events is not None else InMemoryStore(
            ttl_seconds=settings.event_dedup_ttl_seconds
        )

    def _is_duplicate(self, event: dict) -> bool:
        event_id = event.get("webhookEventId")
        if not event_id:
            return False
        if self.seen_events.get(event_id) is not None:
            return True
        self.seen_events.set(event_id, True)
        return False

    async def deliver(self, outcome: JobOutcome):
        await self.line_client.push(outcome.user_id, outcome_messages(outcome))

    async def handle_text(self, user_id: str, text: str, reply_token: str):
        result = self.conversation.on_message(user_id, text)
        reply = result.reply
        criteria = result.dispatch

        if criteria is not None and self.coordinator.is_running(user_id):
            # Reject policy: one search per user at a time. No job backs this
            # session, so drop it instead of leaving it dispatching.
            self.conversation.clear_session(user_id)
            reply = BUSY_MESSAGE
            criteria = None

        # The acknowledgment goes out before the job is scheduled; the job is
        # scheduled even when the reply fails so the session is not stranded
        try:
            await self.line_client.reply(reply_token, [text_message(reply)])
        except httpx.HTTPError as e:
            logger.error(f"Reply failed: {e}", extra={'user_id': user_id})
        finally:
            if criteria is not None:
                self.coordinator.submit(user_id, criteria, self.deliver)

    async def handle_event(self, event: dict):
        if event.get("type") != "message":
            return
        message = event.get("message") or {}
        if message.get("type") != "text":
            return
        user_id = (event.get("source") or {}).get("userId")
        reply_token = event.get("replyToken")
        if not user_id or not reply_token:
            return
        if self._is_duplicate(event):
            logger.info("Skipping redelivered event", extra={'user_id': user_id})
            return

        await self.handle_text(user_id, message.get("text", ""), reply_token)

    async def handle_payload(self, payload: dict):
        for event in payload.get("events", []):
            try:
                await self.handle_event(event)
            except Exception as e:
                # LINE redelivers on non-2xx; one bad event must not fail the batch
                logger.exception(f"Error handling webhook event: {e}")

    async def shutdown(self):
        await self.coordinator.shutdown()
        await self.line_client.aclose()


def build_handler() -> WebhookHandler:
    driver = AuctionDriver()
    coordinator = JobCoordinator(driver, on_finished=conversation_manager.finish_dispatch)
    return WebhookHandler(conversation_manager, coordinator, LineMessagingClient())

handler = build_handler()

def get_handler() -> WebhookHandler:
    return handler

router = APIRouter()

@router.post("/webhook")
async def webhook(request: Request, webhook_handler: WebhookHandler = Depends(get_handler)):
    body = await request.body()

    if settings.line_channel_secret:
        signature = request.headers.get("x-line-signature")
        if not verify_signature(settings.line_channel_secret, body, signature):
            logger.warning("Rejected webhook with invalid signature")
            return {"status": "ignored"}

    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Malformed webhook body: {e}")
        return {"status": "ignored"}

    if not isinstance(payload, dict) or not isinstance(payload.get("events", []), list):
        logger.warning("Webhook body is not an event batch")
        return {"status": "ignored"}

    await webhook_handler.handle_payload(payload)
    return {"status": "ok"}
