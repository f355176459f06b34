import json
import logging
from typing import Literal

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langchain_core.runnables import RunnableLambda
from langgraph.graph import END, START, StateGraph
from langgraph.prebuilt import ToolNode
from sqlalchemy.exc import InterfaceError, OperationalError

from state import DEFAULT_REMAINING_STEPS, LoopState
from tools import create_invoice_tools, create_music_tools

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED_MESSAGE = "Sorry, I was unable to complete this request within the allowed number of steps."


# ---------------- Helpers ----------------
def add_name(msg, name):
    d = msg.model_dump()
    d["name"] = name
    return AIMessage(**d)


def message_text(msg: BaseMessage) -> str:
    content = msg.content
    if isinstance(content, str):
        return content
    # Provider content blocks: keep only the text parts
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block)
        for block in content
    )


def handle_tool_error(error: Exception) -> str:
    # A store that is down is fatal for the run, not something the model can fix
    if isinstance(error, (OperationalError, InterfaceError)):
        raise error
    return json.dumps({
        "error": "TOOL_ERROR",
        "message": f"{error!r}\nPlease fix your mistakes.",
    })


def create_tool_node(tools: list) -> ToolNode:
    return ToolNode(tools, handle_tool_errors=handle_tool_error)


# ---------------- Prompts ----------------
def generate_music_assistant_prompt(memory: str = "None") -> str:
    return f"""You are the Music agent, one member of a music store's assistant team.

Your goal: answer questions about the store's music catalog (artists, albums, tracks, genres).
- Use the catalog tools to look things up; never invent catalog content.
- If a search returns nothing, try a partial name or an alternative spelling before concluding the item is not in the catalog.
- If the catalog has nothing for the request, say so plainly.
- When listing songs, include the artist name with each song and mention the album when relevant.
- Use the saved preferences below to tailor recommendations.
- You are answering through an automated system, not chatting with the customer: no small talk and no follow-up questions.

Prior saved user preferences: {memory}
"""


INVOICE_SUBAGENT_PROMPT = """You are the Invoice agent, one member of a music store's assistant team.

Your goal: answer questions about the current customer's invoices, purchases and billing history.
- get_invoices_by_customer_sorted_by_date: all invoices of the current customer, newest first.
- get_invoices_sorted_by_unit_price: the current customer's invoices ordered by unit price.
- get_employee_by_invoice_and_customer: the support employee for one invoice (needs invoice_id).
- The customer ID is supplied by the system. Never ask for it and never pass it to a tool.
- If a tool reports the customer is not verified or returns no data, say you are unable to retrieve the information.
- You are answering through an automated system, not chatting with the customer: no small talk and no follow-up questions.
"""


# ---------------- Nodes ----------------
class Assistant:
    """Decision step of a tool loop; spends one unit of budget per round of tool calls."""

    def __init__(self, name: str, runnable):
        self.name = name
        self.runnable = runnable

    def __call__(self, state: LoopState):
        result = self.runnable.invoke(state["messages"])
        if not result.tool_calls:
            return {"messages": [add_name(result, self.name)]}

        remaining = state.get("remaining_steps", DEFAULT_REMAINING_STEPS)
        if remaining <= 0:
            logger.warning("%s exhausted its step budget; stopping tool calls", self.name)
            partial = message_text(result).strip()
            return {
                "messages": [AIMessage(content=partial or BUDGET_EXHAUSTED_MESSAGE, name=self.name)],
                "is_incomplete": True,
            }

        logger.debug("%s requested tools: %s", self.name, [tc["name"] for tc in result.tool_calls])
        return {
            "messages": [add_name(result, self.name)],
            "remaining_steps": remaining - 1,
        }


def route_after_assistant(state: LoopState) -> Literal["tools", "__end__"]:
    last = state["messages"][-1]
    if isinstance(last, AIMessage) and last.tool_calls:
        return "tools"
    return END


# ---------------- Graph ----------------
def create_tool_loop(name: str, model, tools: list, system_prompt: str):
    """Compile a decide -> execute tools -> decide loop that ends on a reply without tool calls."""

    def with_system(msgs):
        return [SystemMessage(content=system_prompt)] + msgs

    chain = RunnableLambda(with_system) | model.bind_tools(tools).with_config({
        "run_name": f"agent:{name}.llm",
        "tags": [f"agent:{name}", "llm"],
        "metadata": {"component": "agent_llm", "agent": name},
    })

    g = StateGraph(LoopState)
    g.add_node(name, Assistant(name, chain))
    g.add_node("tools", create_tool_node(tools))
    g.add_edge(START, name)
    g.add_conditional_edges(name, route_after_assistant, {"tools": "tools", END: END})
    g.add_edge("tools", name)
    # Nested loops are ephemeral units of work; only the top-level graph checkpoints
    return g.compile(checkpointer=False)


def run_tool_loop(loop, messages: list, max_steps: int) -> dict:
    return loop.invoke(
        {"messages": messages, "remaining_steps": max_steps, "is_incomplete": False},
        {"recursion_limit": 2 * max_steps + 5},
    )


def create_music_subagent(model, engine, memory: str = ""):
    prompt = generate_music_assistant_prompt(memory or "None")
    return create_tool_loop("music", model, create_music_tools(engine), prompt)


def create_invoice_subagent(model, engine, customer_id):
    return create_tool_loop("invoice", model, create_invoice_tools(engine, customer_id), INVOICE_SUBAGENT_PROMPT)
