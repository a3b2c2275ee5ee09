"""LangGraph-based tool-calling agent for appointment booking.

Architecture:
  A two-node StateGraph:

    1. **chatbot** — the LLM (OpenAI or Anthropic, per ``LLM_PROVIDER``)
                     bound to the booking tools
    2. **tools**   — executes any tool calls the LLM requests

  Routing:
    chatbot → (has tool calls?) → tools → chatbot (loop)
            → (no tool calls?)  → END

  Memory:
    The graph is compiled *without* a checkpointer.  The conversation
    service loads recent history (cache-aside over the database) and
    passes it in with every turn, so any replica can serve any session.
    The signed-in user's ID travels in ``config["configurable"]`` and is
    read by the tools.
"""

from __future__ import annotations

import logging
from typing import Annotated

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AnyMessage, SystemMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.prebuilt import ToolNode
from typing_extensions import TypedDict

from assistant.config import (
    LLM_MAX_TOKENS,
    LLM_PROVIDER,
    LLM_TEMPERATURE,
    MODEL_NAME,
    resolve_llm_api_key,
)
from assistant.prompts import get_system_prompt
from assistant.services.metrics import metrics
from assistant.tools.booking import BOOKING_TOOLS

logger = logging.getLogger(__name__)


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` uses the ``add_messages`` reducer so that each node can
    append without overwriting the history.  ``user_name`` personalises
    the system prompt.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    user_name: str


# ── LLM builder ─────────────────────────────────────────────────────


def _build_chat_model(provider: str = LLM_PROVIDER) -> BaseChatModel:
    """Build the chat model for *provider* (no tools bound)."""
    api_key = resolve_llm_api_key(provider)
    if provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=MODEL_NAME,
            api_key=api_key,
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,
        )

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=MODEL_NAME,
        api_key=api_key,
        temperature=LLM_TEMPERATURE,
        max_tokens=LLM_MAX_TOKENS,
    )


def _build_llm():
    """Build the primary LLM with the booking tools bound."""
    return _build_chat_model().bind_tools(BOOKING_TOOLS)


# ── Node: chatbot ───────────────────────────────────────────────────


def _make_chatbot_node():
    """Create the chatbot node.

    The LLM + tool bindings are captured in the closure so that the
    chatbot → tools → chatbot loop reuses one client.
    """
    llm_with_tools = _build_llm()

    def chatbot_node(state: AgentState) -> dict:
        logger.debug("chatbot node invoked — %s/%s", LLM_PROVIDER, MODEL_NAME)
        system = SystemMessage(content=get_system_prompt(state.get("user_name") or "the user"))
        with metrics.track(LLM_PROVIDER, "llm_invoke"):
            response = llm_with_tools.invoke([system] + state["messages"])
        return {"messages": [response]}

    return chatbot_node


# ── Conditional edge ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to the tools node while the last message carries tool calls."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "tools"
    return END


# ── Graph assembly ──────────────────────────────────────────────────


def create_booking_agent():
    """Build and compile the booking agent graph.

    Returns a compiled graph that can be invoked with:
        graph.invoke(
            {"messages": [...history, HumanMessage(content="...")], "user_name": "Ada"},
            config={"configurable": {"user_id": "..."}, "recursion_limit": 12},
        )
    """
    graph = StateGraph(AgentState)

    graph.add_node("chatbot", _make_chatbot_node())
    graph.add_node("tools", ToolNode(BOOKING_TOOLS))

    graph.set_entry_point("chatbot")
    graph.add_conditional_edges("chatbot", should_use_tools, {"tools": "tools", END: END})
    graph.add_edge("tools", "chatbot")

    compiled = graph.compile()
    logger.debug(
        "Booking agent compiled — %s/%s, tools: %d",
        LLM_PROVIDER, MODEL_NAME, len(BOOKING_TOOLS),
    )
    return compiled
