"""Turn a finished job into the messages pushed back to the user."""

from typing import Dict, List

from auction_bot.core.errors import FailureKind
from auction_bot.services.line_client import MAX_MESSAGES, text_message
from auction_bot.services.models import JobOutcome, ListingRecord

NO_RESULTS_MESSAGE = "条件に合う車両が見つかりませんでした。条件を変えて再度お試しください。（「リセット」で最初から）"

FAILURE_MESSAGES = {
    FailureKind.CONFIGURATION_ERROR: "検索システムの設定に問題があります。管理者にお問い合わせください。",
    FailureKind.AUTH_COLLISION: "オークションサイトが別の端末で使用中のため検索できませんでした。しばらくしてから再度お試しください。",
}
GENERIC_FAILURE_MESSAGE = "検索中にエラーが発生しました。時間をおいて再度お試しください。"

def format_listing(index: int, record: ListingRecord) -> str:
    lines = [f"{index}. {record.title}"]
    details = [v for v in (record.grade, record.year, record.district) if v]
    if details:
        lines.append(" / ".join(details))
    if record.mileage_text:
        lines.append(f"走行距離: {record.mileage_text}")
    lines.append(f"価格: {record.price_text or '不明'}")
    if record.detail_url:
        lines.append(record.detail_url)
    return "\n".join(lines)

def outcome_messages(outcome: JobOutcome) -> List[Dict]:
    """Exactly one terminal message set: listings, a no-results notice or a failure notice."""
    if not outcome.succeeded:
        return [text_message(FAILURE_MESSAGES.get(outcome.failure, GENERIC_FAILURE_MESSAGE))]

    if not outcome.records:
        return [text_message(NO_RESULTS_MESSAGE)]

    header = f"検索結果（価格の安い順に{len(outcome.records)}件）"
    blocks = [format_listing(i, r) for i, r in enumerate(outcome.records, start=1)]

    # Pack listings into as few text bubbles as the reply limit allows
    per_message = -(-len(blocks) // (MAX_MESSAGES - 1))
    messages = [text_message(header)]
    for start in range(0, len(blocks), per_message):
        messages.append(text_message("\n\n".join(blocks[start:start + per_message])))
    return messages
