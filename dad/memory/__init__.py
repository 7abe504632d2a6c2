"""Durable state: the SQLite database and the stores built on it."""
from dad.memory.conversations import Conversation, ConversationStore
from dad.memory.relationships import Relationship, RelationshipContext, RelationshipStore
from dad.memory.store import Database

__all__ = [
    "Conversation",
    "ConversationStore",
    "Database",
    "Relationship",
    "RelationshipContext",
    "RelationshipStore",
]
