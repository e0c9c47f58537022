from typing import Any, Dict, List, Literal, Optional
import logging

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


def generate_openai_message(content: str, role: Role = "user") -> Dict[str, Any]:
    """Generate a dictionary in OpenAI-compatible format.

    Parameters
    ----------
    content : str
        The content of the message.
    role : Literal["system", "user", "assistant"], optional
        The role of the sender.
    """
    if role not in ("system", "user", "assistant"):
        raise ValueError(f"Invalid role: {role}")
    return {"role": role, "content": content}


def get_message_text(message: Optional[Dict[str, Any]]) -> str:
    """Return the text content of a message, or an empty string."""
    if message is None:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: List[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                texts.append(item.get("text", ""))
        return "\n".join(texts)
    return ""


def normalize_history(history: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Copy a conversation history, keeping only `role` and `content`.

    Messages with unsupported roles are dropped with a warning.
    """
    if not history:
        return []
    normalized = []
    for message in history:
        role = message.get("role")
        if role not in ("system", "user", "assistant"):
            logger.warning("Dropping history message with unsupported role '%s'.", role)
            continue
        normalized.append(generate_openai_message(get_message_text(message), role=role))
    return normalized
