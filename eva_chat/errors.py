from __future__ import annotations


class EvaChatError(Exception):
    """Base class for errors raised by the chat core."""


class EmptyInputError(EvaChatError):
    """Raised when a blank message is submitted."""


class BusyError(EvaChatError):
    """Raised when a conversation already has an exchange in flight."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} is waiting for a reply.")
        self.conversation_id = conversation_id


class CollaboratorError(EvaChatError):
    """Raised when the remote completion call fails for any reason."""


class PersistenceReadError(EvaChatError):
    """Raised when persisted state is missing its shape or cannot be read."""


class RestoreTargetMissingError(EvaChatError):
    """Raised when a trashed message has neither a live nor a trashed parent."""


class ConversationNotFoundError(EvaChatError, KeyError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Unknown conversation: {conversation_id}")
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return str(self.args[0])


class MessageNotDeletableError(EvaChatError):
    """Raised when deleting anything other than a user message."""


class TrashRecordNotFoundError(EvaChatError, KeyError):
    def __init__(self, record_id: str) -> None:
        super().__init__(f"Unknown trash record: {record_id}")
        self.record_id = record_id

    def __str__(self) -> str:
        return str(self.args[0])
