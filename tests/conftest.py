import threading
from typing import Any

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, SystemMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from langchain_core.runnables import RunnableLambda
from langgraph.store.memory import InMemoryStore
from pydantic import Field
from sqlalchemy import create_engine, text

from agent import AgentDependencies

_LOCK = threading.Lock()

# Markers that pick a script by the system prompt of each caller
MUSIC = "You are the Music agent"
INVOICE = "You are the Invoice agent"
SUPERVISOR = "You are a supervisor of a music store"
VERIFY = "verifying the customer's identity"

SCHEMA = [
    "CREATE TABLE Artist (ArtistId INTEGER PRIMARY KEY, Name TEXT)",
    "CREATE TABLE Album (AlbumId INTEGER PRIMARY KEY, Title TEXT, ArtistId INTEGER)",
    "CREATE TABLE Genre (GenreId INTEGER PRIMARY KEY, Name TEXT)",
    "CREATE TABLE Track (TrackId INTEGER PRIMARY KEY, Name TEXT, AlbumId INTEGER, GenreId INTEGER, UnitPrice NUMERIC)",
    "CREATE TABLE Employee (EmployeeId INTEGER PRIMARY KEY, FirstName TEXT, LastName TEXT, Title TEXT, Email TEXT)",
    "CREATE TABLE Customer (CustomerId INTEGER PRIMARY KEY, FirstName TEXT, LastName TEXT, Email TEXT, Phone TEXT, SupportRepId INTEGER)",
    "CREATE TABLE Invoice (InvoiceId INTEGER PRIMARY KEY, CustomerId INTEGER, InvoiceDate TEXT, Total NUMERIC)",
    "CREATE TABLE InvoiceLine (InvoiceLineId INTEGER PRIMARY KEY, InvoiceId INTEGER, TrackId INTEGER, UnitPrice NUMERIC, Quantity INTEGER)",
]

ROWS = [
    "INSERT INTO Artist VALUES (1, 'AC/DC'), (2, 'Amy Winehouse'), (3, 'Miles Davis')",
    "INSERT INTO Album VALUES (1, 'For Those About To Rock We Salute You', 1), (2, 'Back to Black', 2), (3, 'Frank', 2), (4, 'Kind of Blue', 3)",
    "INSERT INTO Genre VALUES (1, 'Rock'), (2, 'Jazz'), (3, 'R&B/Soul')",
    "INSERT INTO Track VALUES (1, 'For Those About To Rock (We Salute You)', 1, 1, 0.99), (2, 'Rehab', 2, 3, 0.99), "
    "(3, 'You Know I''m No Good', 2, 3, 0.99), (4, 'So What', 4, 2, 1.99), (5, 'Stronger Than Me', 3, 3, 0.99)",
    "INSERT INTO Employee VALUES (3, 'Jane', 'Peacock', 'Sales Support Agent', 'jane@chinookcorp.com'), "
    "(4, 'Margaret', 'Park', 'Sales Support Agent', 'margaret@chinookcorp.com')",
    "INSERT INTO Customer VALUES (3, 'François', 'Tremblay', 'ftremblay@gmail.com', '+1 (514) 721-4711', 3), "
    "(10, 'Eduardo', 'Martins', 'eduardo@woodstock.com.br', '+55 (11) 3033-5446', 3), "
    "(30, 'Edward', 'Francis', 'edfrancis@yachoo.ca', '+1 (613) 234-3322', 4)",
    "INSERT INTO Invoice VALUES (1, 10, '2025-01-05 00:00:00', 1.98), (2, 10, '2025-03-01 00:00:00', 1.99), "
    "(333, 30, '2025-12-07 00:00:00', 8.91)",
    "INSERT INTO InvoiceLine VALUES (1, 1, 2, 0.99, 1), (2, 1, 3, 0.99, 1), (3, 2, 4, 1.99, 1), (4, 333, 1, 0.99, 9)",
]


class ScriptedChatModel(BaseChatModel):
    """Fake decision step: replies are popped from the script whose marker appears in the system prompt."""

    scripts: dict = Field(default_factory=dict)
    structured: dict = Field(default_factory=dict)
    calls: list = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs: Any) -> ChatResult:
        system = next((m.content for m in messages if isinstance(m, SystemMessage)), "")
        with _LOCK:
            marker = next((k for k in self.scripts if k in system), None)
            if marker is None or not self.scripts[marker]:
                raise AssertionError(f"No scripted reply for prompt: {system[:80]!r}")
            self.calls.append((marker, list(messages)))
            reply = self.scripts[marker].pop(0)
        if isinstance(reply, str):
            reply = AIMessage(content=reply)
        return ChatResult(generations=[ChatGeneration(message=reply)])

    def bind_tools(self, tools, **kwargs):
        return self

    def with_structured_output(self, schema, **kwargs):
        def respond(_):
            with _LOCK:
                return self.structured[schema.__name__].pop(0)
        return RunnableLambda(respond)

    def calls_for(self, marker: str) -> list:
        return [messages for m, messages in self.calls if m == marker]


def tool_call(name: str, args: dict, call_id: str) -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


@pytest.fixture
def engine(tmp_path):
    # File-backed so concurrent tool threads each get their own connection
    engine = create_engine(f"sqlite:///{tmp_path / 'chinook.db'}")
    with engine.begin() as conn:
        for statement in SCHEMA + ROWS:
            conn.execute(text(statement))
    yield engine
    engine.dispose()


@pytest.fixture
def model():
    return ScriptedChatModel()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def deps(model, engine, store):
    return AgentDependencies(model=model, engine=engine, store=store, max_steps=5)
