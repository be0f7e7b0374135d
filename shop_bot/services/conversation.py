"""
Conversation Message Log.

Persists the user and assistant messages of a session. Inbound messages are
stored once, keyed by the client message id when one is sent; assistant
messages remember which inbound message they answer, so a replayed inbound
message can be answered with the exact replies it got the first time.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from ..config import BOT_NAME, BOT_TITLE
from ..models import ChatMessage, Conversation
from ..schemas.chat import AssistantIdentity, MessageMetadata, OutboundMessage

logger = logging.getLogger(__name__)


class ConversationLog:
    """Message persistence for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def record_user_message(
        self,
        session_id: str,
        content: str,
        step: str,
        message_id: Optional[str] = None,
    ) -> Optional[ChatMessage]:
        """
        Store the inbound message.

        Returns the row, or None when the write failed (logged; the turn
        goes on).
        """
        row = ChatMessage(
            conversation_id=session_id,
            message_id=message_id,
            type="user",
            content=content,
            choices=[],
            meta={"step": step},
        )
        return self._add(row, session_id)

    def record_assistant_messages(
        self,
        session_id: str,
        messages: List[OutboundMessage],
        reply_to: Optional[str] = None,
    ) -> None:
        """Store outbound messages before they are returned."""
        for message in messages:
            row = ChatMessage(
                conversation_id=session_id,
                reply_to=reply_to,
                type=message.type,
                content=message.content,
                choices=list(message.choices),
                meta=message.metadata.model_dump(mode="json", exclude_none=True),
            )
            self._add(row, session_id)

    def replies_to(self, session_id: str, message_id: str) -> List[OutboundMessage]:
        """Assistant messages previously sent in answer to ``message_id``."""
        rows = (
            self.db.query(ChatMessage)
            .filter(
                ChatMessage.conversation_id == session_id,
                ChatMessage.reply_to == message_id,
                ChatMessage.type == "assistant",
            )
            .order_by(ChatMessage.id)
            .all()
        )
        return [self._to_outbound(row) for row in rows]

    def history(self, session_id: str, limit: int) -> List[Dict[str, str]]:
        """Recent messages as [{"role", "content"}], oldest first."""
        rows = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == session_id)
            .order_by(ChatMessage.id.desc())
            .limit(limit)
            .all()
        )
        return [
            {"role": row.type, "content": row.content}
            for row in reversed(rows)
        ]

    # ---- Internals ----

    def _add(self, row: ChatMessage, session_id: str) -> Optional[ChatMessage]:
        try:
            self.db.add(row)
            conversation = self.db.query(Conversation).filter(Conversation.id == session_id).one_or_none()
            if conversation is not None:
                meta = dict(conversation.meta or {})
                meta["messageCount"] = meta.get("messageCount", 0) + 1
                conversation.meta = meta
                flag_modified(conversation, "meta")
            self.db.commit()
            return row
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to store %s message for session %s: %s", row.type, session_id, e)
            return None

    @staticmethod
    def _to_outbound(row: ChatMessage) -> OutboundMessage:
        meta = dict(row.meta or {})
        meta.setdefault("nextStep", "initial")
        assistant = None
        if row.type == "assistant":
            assistant = AssistantIdentity(name=BOT_NAME, title=BOT_TITLE)
        return OutboundMessage(
            type=row.type,
            content=row.content,
            choices=list(row.choices or []),
            assistant=assistant,
            metadata=MessageMetadata(**meta),
            timestamp=row.created_at or datetime.now(timezone.utc),
        )
