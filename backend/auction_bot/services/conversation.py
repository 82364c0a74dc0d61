"""Slot-filling conversation that collects search criteria one question per turn."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from auction_bot.core.config import settings
from auction_bot.core.logger import logger
from auction_bot.services.models import ConversationReply, ConversationSession, SessionState
from auction_bot.services.normalizer import criteria_from_slots
from auction_bot.services.stores import InMemoryStore, KeyedStore

RESET_KEYWORDS = ("リセット", "reset")
SKIP_KEYWORDS = ("スキップ", "skip")

ACK_MESSAGE = "条件を受け付けました。オークションサイトを検索しています。結果が出るまで少々お待ちください。"
BUSY_MESSAGE = "現在検索中です。結果をお送りするまでお待ちください。（やり直す場合は「リセット」と送信してください）"
REQUIRED_MESSAGE = "この項目は省略できません。"

@dataclass(frozen=True)
class Slot:
    name: str
    question: str
    skippable: bool = True

SLOT_REGISTRY: Dict[str, Slot] = {
    "maker": Slot("maker", "メーカーを入力してください。（例：トヨタ）", skippable=False),
    "model": Slot("model", "車種を入力してください。（例：ヤリス）不明な場合は「スキップ」"),
    "grade": Slot("grade", "グレードを入力してください。不要な場合は「スキップ」"),
    "type": Slot("type", "型式を入力してください。不要な場合は「スキップ」"),
    "budget": Slot("budget", "予算の上限を入力してください。（例：100万）不要な場合は「スキップ」"),
    "mileage": Slot("mileage", "走行距離の上限を入力してください。（例：5万km）不要な場合は「スキップ」"),
    "keyword": Slot("keyword", "その他のキーワードがあれば入力してください。不要な場合は「スキップ」"),
}

def _is_command(text: str, keywords: Sequence[str]) -> bool:
    return text.strip().lower() in keywords

class ConversationManager:
    """Per-user slot-filling state machine.

    Sessions are created on first contact, advance one slot per message and
    move to DISPATCHING when the last slot is answered. The session stays in
    DISPATCHING until the search job finishes and `finish_dispatch` is
    called, so messages sent mid-search get the busy notice.
    """

    def __init__(self, slot_names: Sequence[str] = None, store: KeyedStore = None):
        names = list(slot_names) if slot_names is not None else list(settings.conversation_slots)
        unknown = [name for name in names if name not in SLOT_REGISTRY]
        if unknown or not names:
            raise ValueError(f"Invalid conversation slots: {names}")
        self.slots: List[Slot] = [SLOT_REGISTRY[name] for name in names]
        self.sessions: KeyedStore = store if store is not None else InMemoryStore(ttl_seconds=settings.session_ttl_seconds)

    @property
    def first_question(self) -> str:
        return self.slots[0].question

    def get_session(self, user_id: str) -> Optional[ConversationSession]:
        return self.sessions.get(user_id)

    def state_of(self, user_id: str) -> SessionState:
        session = self.sessions.get(user_id)
        return session.state if session else SessionState.IDLE

    def _start(self, user_id: str) -> ConversationReply:
        self.sessions.set(user_id, ConversationSession(user_id=user_id))
        return ConversationReply(reply=self.first_question)

    def on_message(self, user_id: str, text: str) -> ConversationReply:
        """
        Advance the conversation for one inbound message.

        Returns:
            The reply text, plus the finalized SearchCriteria in `dispatch`
            when this message completed the last slot.
        """
        text = text or ""

        if _is_command(text, RESET_KEYWORDS):
            logger.info("Conversation reset", extra={'user_id': user_id})
            return self._start(user_id)

        session = self.sessions.get(user_id)
        if session is None:
            return self._start(user_id)

        if session.state is SessionState.DISPATCHING:
            return ConversationReply(reply=BUSY_MESSAGE)

        slot = self.slots[session.step_index]
        if _is_command(text, SKIP_KEYWORDS):
            if not slot.skippable:
                return ConversationReply(reply=f"{REQUIRED_MESSAGE}{slot.question}")
            value = ""
        else:
            value = text.strip()
            if not value and not slot.skippable:
                return ConversationReply(reply=slot.question)

        collected = {**session.collected, slot.name: value}
        next_index = session.step_index + 1

        if next_index < len(self.slots):
            session.collected = collected
            session.step_index = next_index
            self.sessions.set(user_id, session)
            return ConversationReply(reply=self.slots[next_index].question)

        # Criteria are built before the session changes state
        criteria = criteria_from_slots(collected)
        session.collected = collected
        session.step_index = next_index
        session.state = SessionState.DISPATCHING
        self.sessions.set(user_id, session)
        logger.info("Criteria collected", extra={'user_id': user_id, 'status': 'dispatching'})
        return ConversationReply(reply=ACK_MESSAGE, dispatch=criteria)

    def finish_dispatch(self, user_id: str):
        """Drop the session once its search job is over.

        A session the user restarted with the reset keyword while the job was
        running is left alone.
        """
        session = self.sessions.get(user_id)
        if session is not None and session.state is SessionState.DISPATCHING:
            self.sessions.delete(user_id)

    def clear_session(self, user_id: str):
        self.sessions.delete(user_id)

# Global instance
conversation_manager = ConversationManager()
