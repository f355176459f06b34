import logging
import uuid
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph
from langgraph.store.base import BaseStore
from langgraph.store.memory import InMemoryStore
from langgraph.types import Command, interrupt
from sqlalchemy.engine import Engine

from config import Settings, build_chat_model, configure_logging, get_settings
from database import get_customer_id_from_identifier, get_engine_for_chinook_db
from memory import CreateMemory, LoadMemory
from state import State, UserInput
from subagents import message_text, run_tool_loop
from supervisor import create_supervisor

logger = logging.getLogger(__name__)

DEFAULT_INPUT_PROMPT = "Please provide input."


# ---------------- Dependencies ----------------
@dataclass
class AgentDependencies:
    model: Any
    engine: Engine
    store: BaseStore
    max_steps: int = 25


def create_dependencies(settings: Settings) -> AgentDependencies:
    return AgentDependencies(
        model=build_chat_model(settings),
        engine=get_engine_for_chinook_db(settings),
        store=InMemoryStore(),
        max_steps=settings.MAX_STEPS,
    )


# ---------------- Prompts ----------------
structured_system_prompt = """You are a customer service representative responsible for extracting the customer identifier.
Only extract the customer's account information from the message history.
If they haven't provided the information yet, return an empty string for the identifier."""

verification_prompt = """You are a music store agent, and verifying the customer's identity is the first step of the support process.
You cannot support them until their account is verified.
To verify their identity, the customer must provide one of: customer ID, email, or phone number.
If the customer has not provided an identifier, ask them for it.
If they provided one that could not be found, ask them to revise it.

IMPORTANT: Do NOT ask about their request or try to address it until their identity is verified. Only ask about their identity.
"""


# ---------------- Nodes ----------------
class VerifyInfo:
    """Security gate: resolves the customer from the latest message or asks for an identifier."""

    def __init__(self, model, engine: Engine):
        self.model = model
        self.extractor = model.with_structured_output(UserInput)
        self.engine = engine

    def __call__(self, state: State):
        if state.get("customer_id") is not None:
            return {}

        messages = state.get("messages") or []
        identifier = ""
        if messages:
            parsed = self.extractor.invoke([SystemMessage(content=structured_system_prompt), messages[-1]])
            identifier = (parsed.identifier or "").strip()

        customer_id = get_customer_id_from_identifier(self.engine, identifier) if identifier else None
        if customer_id is not None:
            logger.info("Verified customer %s", customer_id)
            return {
                "customer_id": customer_id,
                "messages": [AIMessage(
                    content=f"Thank you for providing your information! I was able to verify your account with customer id {customer_id}."
                )],
            }

        logger.info("Customer identity unresolved (identifier given: %s)", bool(identifier))
        response = self.model.invoke([SystemMessage(content=verification_prompt)] + messages)
        return {"messages": [response]}


def human_input(state: State):
    last = state["messages"][-1] if state.get("messages") else None
    prompt = message_text(last) if isinstance(last, AIMessage) and last.content else DEFAULT_INPUT_PROMPT
    user_input = interrupt(prompt)
    return {"messages": [HumanMessage(content=str(user_input))]}


class SupervisorNode:
    def __init__(self, deps: AgentDependencies):
        self.deps = deps

    def __call__(self, state: State):
        budget = state.get("remaining_steps", self.deps.max_steps)
        supervisor = create_supervisor(
            self.deps.model,
            self.deps.engine,
            state.get("customer_id"),
            state.get("loaded_memory", ""),
            budget,
        )
        history = state["messages"]
        result = run_tool_loop(supervisor, history, budget)
        # Hand back only what the supervisor added
        return {
            "messages": result["messages"][len(history):],
            "is_incomplete": bool(result.get("is_incomplete")),
        }


# ---------------- Routing ----------------
def should_interrupt(state: State) -> Literal["continue", "interrupt"]:
    if state.get("customer_id") is not None:
        return "continue"
    return "interrupt"


# ---------------- Graph ----------------
def create_graph(deps: AgentDependencies):
    g = StateGraph(State)
    g.add_node("verify_info", VerifyInfo(deps.model, deps.engine))
    g.add_node("human_input", human_input)
    g.add_node("load_memory", LoadMemory(deps.store))
    g.add_node("supervisor", SupervisorNode(deps))
    g.add_node("create_memory", CreateMemory(deps.model, deps.store))

    g.add_edge(START, "verify_info")
    g.add_conditional_edges("verify_info", should_interrupt, {
        "continue": "load_memory",
        "interrupt": "human_input",
    })
    g.add_edge("human_input", "verify_info")
    g.add_edge("load_memory", "supervisor")
    g.add_edge("supervisor", "create_memory")
    g.add_edge("create_memory", END)
    return g


# ---------------- Entry point ----------------
@dataclass
class Completed:
    thread_id: str
    state: dict


@dataclass
class Suspended:
    thread_id: str
    prompt: str


RunResult = Union[Completed, Suspended]


class SupportBot:
    """
    Drives the top-level graph for conversation threads.

    A run either completes or suspends at the human-input node. A suspended
    thread stays checkpointed until resume() supplies the user's reply; no
    timeout is applied.
    """

    def __init__(self, deps: AgentDependencies, checkpointer=None):
        self.deps = deps
        self.graph = create_graph(deps).compile(
            checkpointer=checkpointer or MemorySaver(),
            store=deps.store,
        )

    def invoke(self, state: dict, thread_id: str) -> RunResult:
        inputs = {
            "messages": list(state.get("messages", [])),
            "remaining_steps": state.get("remaining_steps", self.deps.max_steps),
        }
        if state.get("customer_id") is not None:
            inputs["customer_id"] = int(state["customer_id"])
        return self._run(inputs, thread_id)

    def resume(self, thread_id: str, text: str) -> RunResult:
        if not self._pending_interrupts(self._config(thread_id)):
            raise ValueError(f"Thread {thread_id} is not waiting for input")
        logger.info("Resuming thread %s", thread_id)
        return self._run(Command(resume=text), thread_id)

    def _config(self, thread_id: str) -> dict:
        return {"configurable": {"thread_id": thread_id}}

    def _pending_interrupts(self, config: dict) -> list:
        snapshot = self.graph.get_state(config)
        return [i for task in snapshot.tasks for i in task.interrupts]

    def _run(self, payload, thread_id: str) -> RunResult:
        config = self._config(thread_id)
        try:
            self.graph.invoke(payload, config)
        except Exception:
            logger.exception("Run failed for thread %s", thread_id)
            raise

        interrupts = self._pending_interrupts(config)
        if interrupts:
            logger.info("Thread %s suspended for human input", thread_id)
            return Suspended(thread_id=thread_id, prompt=str(interrupts[0].value))
        return Completed(thread_id=thread_id, state=dict(self.graph.get_state(config).values))


def last_reply(outcome: RunResult) -> str:
    if isinstance(outcome, Suspended):
        return outcome.prompt
    messages = outcome.state.get("messages", [])
    return message_text(messages[-1]) if messages else ""


# ---------------- Console ----------------
def main(thread_id: Optional[str] = None):
    configure_logging()
    settings = get_settings()
    problems = settings.validate()
    if problems:
        raise SystemExit("Invalid settings: " + "; ".join(problems))

    bot = SupportBot(create_dependencies(settings))
    thread_id = thread_id or str(uuid.uuid4())
    outcome = None
    print(f"Music store support (thread {thread_id}). Type 'quit' to exit.")
    while True:
        try:
            text = input("you> ").strip()
        except EOFError:
            break
        if not text:
            continue
        if text.lower() in {"quit", "exit"}:
            break
        if isinstance(outcome, Suspended):
            outcome = bot.resume(thread_id, text)
        else:
            outcome = bot.invoke({"messages": [HumanMessage(content=text)]}, thread_id)
        print(f"bot> {last_reply(outcome)}")


if __name__ == "__main__":
    main()
