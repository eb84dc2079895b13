"""
Utility to convert prompt turns (role/content pairs)
into LangChain message objects.
"""

from typing import Sequence, List
from langchain_core.messages import SystemMessage, HumanMessage, AIMessage, BaseMessage

from chat_session.domain.ports.llm import PromptTurn


def to_langchain_messages(turns: Sequence[PromptTurn]) -> List[BaseMessage]:
    """
    Convert an ordered sequence of prompt turns into LangChain message objects.

    Args:
        turns: Sequence of PromptTurn with role 'system' | 'user' | 'assistant'.

    Returns:
        List of LangChain Message objects in the same conversation order.
        Unknown roles become AIMessage.
    """
    msgs: List[BaseMessage] = []
    for t in turns:
        if t.role == "user":
            msgs.append(HumanMessage(content=t.content))
        elif t.role == "system":
            msgs.append(SystemMessage(content=t.content))
        else:
            msgs.append(AIMessage(content=t.content))
    return msgs
