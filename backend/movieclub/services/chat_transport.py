"""
chat_transport.py

Outbound side of the chat integration. A concrete adapter (Discord, Matrix,
Slack, ...) implements these four calls; the reactor never talks to a chat
network directly.
"""
from abc import ABC, abstractmethod


class ChatTransport(ABC):
    @abstractmethod
    async def post_message(self, channel_id: str, text: str) -> str:
        """Post a message and return its message ID."""

    @abstractmethod
    async def add_reaction(self, channel_id: str, message_id: str, symbol: str) -> None:
        """Attach one reaction symbol from the bot to an existing message."""

    @abstractmethod
    async def remove_reaction(self, channel_id: str, message_id: str, symbol: str) -> None:
        """Detach the bot's reaction symbol from a message."""

    @abstractmethod
    async def edit_message(self, channel_id: str, message_id: str, text: str) -> None:
        """Replace a message's text."""
