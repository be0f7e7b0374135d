"""
Idempotency Guard
=================

Per-step markers stored inside the draft metadata that keep the order flow
safe against repeated or replayed input:

- ``saved_steps`` ({step}_saved): the step's snapshot has been committed.
  ``SessionStateStore.save`` claims the marker in the same call that writes
  the snapshot, and becomes a no-op for a step that is already claimed.

- ``processed_steps`` ({step}_processed): the shopper's answer to the step
  has been handled and the flow moved on. A message that arrives for a
  processed step is a replay and is not handled again.

- Mode markers (``DraftMetadata.mode``): while a purchase is in progress the
  free-text responder must not answer.

Markers are append-only, with two exceptions: reopening a step from a modify
menu releases the markers of the steps being corrected, and the terminal
"back to free conversation" transition resets the mode.

Concurrency note: markers are optimistic single-writer locks. A true
concurrent double submit for the same session is only partially guarded;
the client message id check and the unique order per session constraint
cover the cases that matter (duplicate replies, duplicate orders).
"""

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..flow.draft import Mode, OrderDraft
from ..flow.steps import MODIFY_TARGETS, PREDEFINED_CHOICES, Step, is_structured_step
from ..flow.vocabulary import matches_exactly
from ..models import ChatMessage

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """Reads and writes the idempotency and mode markers of a draft."""

    # ---- Recursion guard ----

    def consume_recursion_flag(self, draft: OrderDraft) -> bool:
        """
        Clear ``prevent_recursion`` and report whether it was set.

        A set flag means the turn must be answered with one generic
        "continue" message and nothing else.
        """
        if not draft.metadata.prevent_recursion:
            return False
        draft.metadata.prevent_recursion = False
        return True

    # ---- Save markers ----

    def claim_save(self, draft: OrderDraft, step: Step) -> bool:
        """Set the {step}_saved marker. Returns False if it was already set."""
        if step in draft.metadata.saved_steps:
            return False
        draft.metadata.saved_steps.add(step)
        return True

    # ---- Processed markers ----

    def mark_transition(self, draft: OrderDraft, from_step: Step, to_step: Step) -> None:
        """
        Record that ``from_step`` was answered and the flow entered ``to_step``.

        Staying on the same step records nothing. Entering a step clears its
        own processed marker so the next answer to it is accepted.
        """
        if from_step == to_step:
            return
        draft.metadata.processed_steps.add(from_step)
        draft.metadata.processed_steps.discard(to_step)

    def is_duplicate(
        self,
        db: Session,
        session_id: str,
        current_step: Step,
        draft: OrderDraft,
        stored_step: Optional[Step] = None,
        request_flags: Optional[Dict[str, Any]] = None,
        message_id: Optional[str] = None,
    ) -> bool:
        """
        Decide whether an inbound message was already handled.

        A message is a duplicate when:
            1. its client message id was already stored for this session, or
            2. the client's own flags say ``current_step`` was processed, or
            3. the server already processed ``current_step`` and has since
               moved to another step (a stale client resending).
        """
        if message_id and self.find_message(db, session_id, message_id) is not None:
            logger.info("Duplicate message %s for session %s", message_id, session_id)
            return True

        if request_flags and request_flags.get(f"{current_step.value}_processed"):
            logger.info(
                "Step %s already processed per client flags (session %s)",
                current_step.value, session_id,
            )
            return True

        if (
            stored_step is not None
            and stored_step != current_step
            and current_step in draft.metadata.processed_steps
        ):
            logger.info(
                "Stale message for processed step %s, session %s is on %s",
                current_step.value, session_id, stored_step.value,
            )
            return True

        return False

    def find_message(self, db: Session, session_id: str, message_id: str) -> Optional[ChatMessage]:
        return (
            db.query(ChatMessage)
            .filter(
                ChatMessage.conversation_id == session_id,
                ChatMessage.message_id == message_id,
                ChatMessage.type == "user",
            )
            .first()
        )

    # ---- Loop-back release ----

    def release(self, draft: OrderDraft, steps: Iterable[Step]) -> None:
        for step in steps:
            draft.metadata.saved_steps.discard(step)
            draft.metadata.processed_steps.discard(step)

    def reopen(self, draft: OrderDraft, step: Step) -> None:
        """Release the markers of the steps a modify menu is reopening."""
        targets = MODIFY_TARGETS.get(step)
        if targets:
            self.release(draft, targets)
            logger.debug("Reopened %s, released %s", step.value, [s.value for s in targets])

    # ---- Free-text suppression ----

    def should_prevent_free_text(self, draft: OrderDraft, step: Step, user_input: str) -> bool:
        """
        True when the free-text responder must not answer this turn.

        That is the case in a purchase-flow mode, on any structured step,
        or when the input is one of the predefined top-level menu choices.
        """
        if draft.metadata.in_purchase_flow:
            return True
        if is_structured_step(step):
            return True
        return matches_exactly(user_input, PREDEFINED_CHOICES)

    def reset_to_free_conversation(self, draft: OrderDraft) -> None:
        """Terminal transition: clear the mode markers."""
        draft.metadata.mode = Mode.FREE_CONVERSATION
        draft.metadata.was_express = False
