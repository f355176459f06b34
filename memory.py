import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage, get_buffer_string
from langgraph.store.base import BaseStore

from state import State, UserProfile

logger = logging.getLogger(__name__)

MEMORY_NAMESPACE = "memory_profile"
MEMORY_KEY = "user_memory"

create_memory_prompt = """You are an analyst observing a finished conversation between a customer and the support assistant of a digital music store.
Your job is to update the memory profile of this customer with any music interests they shared.

Rules:
1. The memory profile may be empty. If it is, create one for the customer.
2. Add any music preference the customer expressed (artists, genres, songs, albums) that is not already in the profile.
3. Keep every existing value that the conversation gives no new information about.
4. Only change a value when there is new information.

The profile has these fields:
- customer_id: the customer ID of the customer
- music_preferences: the music preferences of the customer

The conversation to analyze:
{conversation}

The existing memory profile:
{memory_profile}
"""


def memory_namespace(customer_id) -> tuple:
    return (MEMORY_NAMESPACE, str(customer_id))


def format_user_memory(profile: Optional[UserProfile]) -> str:
    """Fetches music preferences from users, if available."""
    result = ""
    if profile and profile.music_preferences:
        result += f"Music Preferences: {', '.join(profile.music_preferences)}"
    return result.strip()


def get_user_profile(store: BaseStore, customer_id) -> Optional[UserProfile]:
    item = store.get(memory_namespace(customer_id), MEMORY_KEY)
    if not item or not item.value or not item.value.get("memory"):
        return None
    return UserProfile.model_validate(item.value["memory"])


def save_user_profile(store: BaseStore, profile: UserProfile):
    store.put(memory_namespace(profile.customer_id), MEMORY_KEY, {"memory": profile.model_dump()})


def merge_profiles(customer_id: str, existing: Optional[UserProfile], extracted: UserProfile) -> UserProfile:
    """
    Field-by-field merge: a field keeps its previous value unless the
    extraction supplied a non-empty replacement. The key always comes from
    the verified customer id, never from the extraction.
    """
    preferences = [p.strip() for p in extracted.music_preferences if p and p.strip()]
    if not preferences and existing is not None:
        preferences = list(existing.music_preferences)
    return UserProfile(customer_id=customer_id, music_preferences=list(dict.fromkeys(preferences)))


# ---------------- Nodes ----------------
class LoadMemory:
    def __init__(self, store: BaseStore):
        self.store = store

    def __call__(self, state: State):
        customer_id = state.get("customer_id")
        if customer_id is None:
            return {"loaded_memory": ""}

        formatted = format_user_memory(get_user_profile(self.store, customer_id))
        logger.info("Loaded memory for customer %s: %s", customer_id, "present" if formatted else "none")
        return {
            "loaded_memory": formatted,
            "messages": [HumanMessage(content=f"user_preferences: {formatted or 'none'}")],
        }


class CreateMemory:
    def __init__(self, model, store: BaseStore):
        self.extractor = model.with_structured_output(UserProfile)
        self.store = store

    def __call__(self, state: State):
        customer_id = state.get("customer_id")
        if customer_id is None:
            return {}

        existing = get_user_profile(self.store, customer_id)
        formatted_system_message = SystemMessage(content=create_memory_prompt.format(
            conversation=get_buffer_string(state["messages"]),
            memory_profile=state.get("loaded_memory") or format_user_memory(existing),
        ))
        # Some providers require at least one user message
        extracted = self.extractor.invoke([
            formatted_system_message,
            HumanMessage(content="Please analyze the conversation and update the memory profile."),
        ])

        profile = merge_profiles(str(customer_id), existing, extracted)
        save_user_profile(self.store, profile)
        logger.info("Saved memory for customer %s (%d preferences)", customer_id, len(profile.music_preferences))
        return {}
