from typing import Annotated, List, Optional, TypedDict

from langgraph.graph.message import AnyMessage, add_messages
from pydantic import BaseModel, Field

DEFAULT_REMAINING_STEPS = 25


# ---------------- State ----------------
class State(TypedDict, total=False):
    """
    Conversation state threaded through every node of the top-level graph.

    customer_id is written only by verification and is never cleared once set.
    loaded_memory is the formatted preference summary for the verified customer.
    remaining_steps seeds the tool-calling budget of the supervisor loop and of
    each sub-agent it delegates to.
    is_incomplete is set when the last turn stopped on an exhausted budget.
    """
    messages: Annotated[list[AnyMessage], add_messages]
    customer_id: Optional[int]
    loaded_memory: str
    remaining_steps: int
    is_incomplete: bool


class LoopState(TypedDict, total=False):
    """State of a single decide/execute tool loop (supervisor or sub-agent)."""
    messages: Annotated[list[AnyMessage], add_messages]
    remaining_steps: int
    is_incomplete: bool


# ---------------- Extraction schemas ----------------
class UserInput(BaseModel):
    """Schema for parsing user-provided account information."""
    identifier: str = Field(
        default="",
        description="Identifier, which can be a customer ID, email, or phone number.",
    )


class UserProfile(BaseModel):
    customer_id: str = Field(description="The customer ID of the customer")
    music_preferences: List[str] = Field(
        default_factory=list,
        description="The music preferences of the customer",
    )
