"""
Conversation Store

In-memory message history for chatbot conversations.
"""

from typing import Dict, List

# In-memory conversation store
conversations: Dict[str, List[Dict]] = {}


def get_history(conversation_id: str) -> List[Dict]:
    """Get messages for a conversation. Returns empty list if not found."""
    return list(conversations.get(conversation_id, []))


def save_history(conversation_id: str, messages: List[Dict], limit: int) -> None:
    """Store messages, keeping only the most recent `limit`."""
    conversations[conversation_id] = messages[-limit:] if limit else list(messages)


def clear_history(conversation_id: str) -> None:
    conversations.pop(conversation_id, None)


def conversation_exists(conversation_id: str) -> bool:
    return conversation_id in conversations
