"""
Encrypted direct messaging on top of an external message store.

The store (a hosted document database in production) only ever sees the
message body as produced here: a cipher token when encryption succeeded,
plaintext otherwise, together with an `is_encrypted` flag.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from chat_crypto import ConversationCipher

log = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


class MessageRecord(BaseModel):
    """
    A direct message as persisted by the store.

    Attributes:
        sender_id: Id of the sending user
        recipient_id: Id of the receiving user
        body: Cipher token or plaintext
        is_encrypted: True if `body` is a token, None if unknown (legacy record)
        created_at: Creation time (UTC)
    """
    sender_id: str
    recipient_id: str
    body: str
    is_encrypted: Optional[bool] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessageStore(Protocol):
    """Narrow interface to the external message store"""

    async def add_message(self, record: MessageRecord) -> None:
        ...

    async def get_messages(self, user_a: str, user_b: str, limit: int = 50) -> List[MessageRecord]:
        """Messages between two users in either direction, oldest first"""
        ...


class SecureMessenger:
    """
    Sends and reads direct messages for one signed-in user.
    """

    def __init__(self, store: MessageStore, cipher: ConversationCipher, user_id: str,
                 encryption_enabled: bool = True):
        """
        Initialize messenger.

        Args:
            store: External message store
            cipher: Conversation cipher
            user_id: Id of the signed-in user
            encryption_enabled: Encrypt outgoing messages
        """
        self.store = store
        self.cipher = cipher
        self.user_id = user_id
        self.encryption_enabled = encryption_enabled

    async def send(self, recipient_id: str, text: str) -> MessageRecord:
        """
        Send a message, encrypting it when enabled.

        If encryption fails the message is sent as plaintext with
        `is_encrypted=False` rather than being dropped.

        Args:
            recipient_id: Id of the receiving user
            text: Message text

        Returns:
            The stored record

        Raises:
            ValueError: If the message is empty or too long
        """
        text = text.strip()
        if not text:
            raise ValueError("Message is empty")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters")

        body = text
        is_encrypted = False
        if self.encryption_enabled:
            token = await self.cipher.encrypt(text, self.user_id, recipient_id)
            if token is not None:
                body = token
                is_encrypted = True
            else:
                log.warning("Sending message to %s unencrypted: encryption failed", recipient_id)

        record = MessageRecord(
            sender_id=self.user_id,
            recipient_id=recipient_id,
            body=body,
            is_encrypted=is_encrypted
        )
        await self.store.add_message(record)
        return record

    def _peer_of(self, record: MessageRecord) -> str:
        if record.sender_id == self.user_id:
            return record.recipient_id
        return record.sender_id

    async def display_text(self, record: MessageRecord) -> str:
        """
        Text to show for a stored record.

        The `is_encrypted` flag decides; the base64 heuristic is only used when
        the flag is missing.
        """
        encrypted = record.is_encrypted
        if encrypted is None:
            encrypted = self.cipher.is_likely_encrypted(record.body)
        if not encrypted:
            return record.body

        return await self.cipher.decrypt_or_placeholder(
            record.body, self.user_id, self._peer_of(record)
        )

    async def history(self, peer_id: str, limit: int = 50) -> List[Tuple[MessageRecord, str]]:
        """
        Load and decrypt the conversation with a peer.

        Returns:
            List of (record, display text), oldest first
        """
        records = await self.store.get_messages(self.user_id, peer_id, limit)
        texts = await asyncio.gather(*(self.display_text(r) for r in records))
        return list(zip(records, texts))
