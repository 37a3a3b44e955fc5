"""
Messaging hub.

WHAT: Directed messages between two profiles, with unread tracking and replies
WHY: Buyers and farmers talk about listings outside the purchase flow
HOW: Messages stored per sender/recipient; inbox merges the two sides newest first
"""

import heapq
from datetime import datetime
from typing import Optional, List

from ..core.database import get_db, get_read_db
from ..core.models import Message, Profile, Harvest
from .capability_gate import Caller, Action, MessageDraft, capability_gate
from ..utils.exceptions import NotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)

REPLY_PREFIX = "Re: "


def reply_subject(subject: str) -> str:
    """Prefix a subject for a reply, leaving an existing prefix alone."""
    if subject[:3].lower() == REPLY_PREFIX[:3].lower():
        return subject
    return f"{REPLY_PREFIX}{subject}"


def _newest_first(message: Message):
    return (message.created_at, message.id)


class MessagingHub:
    """Send, reply, read-tracking and inbox assembly for profile messages."""

    def __init__(self, session_scope=get_db, read_scope=get_read_db, gate=capability_gate):
        self._session_scope = session_scope
        self._read_scope = read_scope
        self._gate = gate

    def send(
        self,
        sender: Caller,
        recipient_id: str,
        subject: str,
        content: str,
        harvest_id: Optional[str] = None,
    ) -> Message:
        """
        Send a new message from `sender` to `recipient_id`.

        Raises:
            NotFoundError: recipient or referenced harvest does not exist
            ForbiddenError: recipient is the sender
        """
        with self._session_scope() as db:
            recipient = db.get(Profile, recipient_id)
            if recipient is None:
                raise NotFoundError("Profile", recipient_id)
            self._gate.require(sender, Action.SEND_MESSAGE, MessageDraft(sender.profile_id, recipient))
            if harvest_id is not None and db.get(Harvest, harvest_id) is None:
                raise NotFoundError("Harvest", harvest_id)

            message = Message(
                sender_id=sender.profile_id,
                recipient_id=recipient_id,
                harvest_id=harvest_id,
                subject=subject,
                content=content,
                is_read=False,
                created_at=datetime.utcnow(),
            )
            db.add(message)
            db.flush()
            logger.info(f"Message {message.id} sent {sender.profile_id} -> {recipient_id}")
            return message

    def reply(self, original_id: str, replier: Caller, content: str) -> Message:
        """
        Reply to a message.

        The recipient is whichever party of the original is not the replier;
        the subject gets a single "Re: " prefix and the harvest context is kept.
        """
        with self._session_scope() as db:
            original = db.get(Message, original_id)
            if original is None:
                raise NotFoundError("Message", original_id)
            self._gate.require(replier, Action.READ_MESSAGE, original)

            if original.sender_id == replier.profile_id:
                recipient_id = original.recipient_id
            else:
                recipient_id = original.sender_id

            message = Message(
                sender_id=replier.profile_id,
                recipient_id=recipient_id,
                harvest_id=original.harvest_id,
                subject=reply_subject(original.subject),
                content=content,
                is_read=False,
                created_at=datetime.utcnow(),
            )
            db.add(message)
            db.flush()
            logger.info(f"Message {message.id} replies to {original_id} ({replier.profile_id} -> {recipient_id})")
            return message

    def mark_read(self, message_id: str, caller: Caller) -> Message:
        """
        Flip is_read to true. Recipient only; already-read messages are left as is.

        Raises:
            NotFoundError: no such message
            ForbiddenError: caller is not the recipient
        """
        with self._session_scope() as db:
            message = db.get(Message, message_id, with_for_update=True)
            if message is None:
                raise NotFoundError("Message", message_id)
            self._gate.require(caller, Action.MARK_MESSAGE_READ, message)
            if not message.is_read:
                message.is_read = True
                message.read_at = datetime.utcnow()
                db.flush()
                logger.debug(f"Message {message_id} read by {caller.profile_id}")
            return message

    def get(self, message_id: str, caller: Caller) -> Message:
        """Open a message as sender or recipient; the recipient opening it marks it read."""
        with self._read_scope() as db:
            message = db.get(Message, message_id)
            if message is None:
                raise NotFoundError("Message", message_id)
            self._gate.require(caller, Action.READ_MESSAGE, message)
        if message.recipient_id == caller.profile_id and not message.is_read:
            message = self.mark_read(message_id, caller)
        return message

    def unread_count(self, profile_id: str) -> int:
        with self._read_scope() as db:
            return (
                db.query(Message)
                .filter(Message.recipient_id == profile_id, Message.is_read.is_(False))
                .count()
            )

    def inbox(self, caller: Caller) -> List[Message]:
        """Sent and received messages of the caller, newest first."""
        with self._read_scope() as db:
            sent = (
                db.query(Message)
                .filter(Message.sender_id == caller.profile_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .all()
            )
            received = (
                db.query(Message)
                .filter(Message.recipient_id == caller.profile_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .all()
            )
        return list(heapq.merge(sent, received, key=_newest_first, reverse=True))


# Singleton instance
messaging_hub = MessagingHub()
