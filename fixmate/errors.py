from __future__ import annotations


class FixMateError(Exception):
    """Base class for errors raised by the chat backend."""


class ConfigurationError(FixMateError):
    pass


class ProviderError(FixMateError):
    """The model provider failed to produce (or finish) a reply."""


class ConversationConflictError(FixMateError):
    """A read-modify-write save lost the race against another writer."""

    def __init__(self, user_id: str, expected_version: int) -> None:
        super().__init__(
            f"Conversation for user {user_id} changed since version {expected_version}"
        )
        self.user_id = user_id
        self.expected_version = expected_version
