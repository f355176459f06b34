import logging
from typing import Optional

from langchain_core.messages import HumanMessage
from langchain_core.tools import tool

from subagents import (
    create_invoice_subagent,
    create_music_subagent,
    create_tool_loop,
    message_text,
    run_tool_loop,
)

logger = logging.getLogger(__name__)

# ---------------- Prompts ----------------
system_prompt = """You are a supervisor of a music store's customer support team.
You answer customers by delegating to the subagents on your team:
- music_catalog_subagent: questions about the music catalog (albums, tracks, songs, genres) and music recommendations. It knows the customer's saved music preferences.
- invoice_information_subagent: questions about the customer's past purchases, invoices and billing. The customer ID is supplied by the system; do not pass it.

CRITICAL RULES:
- Route each part of the request to the right subagent. If both apply, call both.
- Always finish with one reply to the customer that summarizes what the subagents found. Never hand back a subagent reply as-is.
- If a question is unrelated to music or invoices, politely remind the customer what you can help with and do not answer it.
"""


# ---------------- Delegates ----------------
def create_delegate_tools(model, engine, customer_id: Optional[int], loaded_memory: str, max_steps: int) -> list:
    """
    Build the supervisor's delegate tools.

    Each delegate runs a whole sub-agent loop on a fresh transcript seeded only
    with the delegated query, and returns just the sub-agent's final answer.
    Every sub-agent run gets the same max_steps budget as the supervisor.
    """
    music_subagent = create_music_subagent(model, engine, loaded_memory)
    invoice_subagent = create_invoice_subagent(model, engine, customer_id)

    @tool("music_catalog_subagent")
    def call_music_catalog_subagent(query: str) -> str:
        """An agent that can assist with all music-related queries. It has access to the user's saved music preferences and can retrieve information about the store's music catalog (albums, tracks, songs, etc.)."""
        logger.info("Delegating to music subagent: %.80s", query)
        result = run_tool_loop(music_subagent, [HumanMessage(content=query)], max_steps)
        return message_text(result["messages"][-1])

    @tool("invoice_information_subagent")
    def call_invoice_information_subagent(query: str) -> str:
        """An agent that can assist with all invoice-related queries. It can retrieve information about a customer's past purchases or invoices. The customer ID is automatically retrieved from the state."""
        logger.info("Delegating to invoice subagent for customer %s: %.80s", customer_id, query)
        result = run_tool_loop(invoice_subagent, [HumanMessage(content=query)], max_steps)
        return message_text(result["messages"][-1])

    return [call_music_catalog_subagent, call_invoice_information_subagent]


def create_supervisor(model, engine, customer_id: Optional[int], loaded_memory: str, max_steps: int):
    tools = create_delegate_tools(model, engine, customer_id, loaded_memory, max_steps)
    return create_tool_loop("supervisor", model, tools, system_prompt)
