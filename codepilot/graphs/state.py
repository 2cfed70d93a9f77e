"""State definitions for the agent graph."""

import operator
from typing import Annotated, Any

from pydantic import BaseModel, Field

from codepilot.models.messages import Message


def merge_dicts(current: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Reducer merging an update into the current mapping."""
    return {**current, **update}


class AgentState(BaseModel):
    """State threaded through one run of the agent graph.

    ``messages`` only ever grows: every node returns the messages it produced
    and the reducer appends them, so the full turn is the initial history plus
    all increments.
    """

    # Core conversation data
    messages: Annotated[list[Message], operator.add] = Field(default_factory=list)
    conversation_id: str

    # Tool execution tracking, keyed by tool call id
    tool_results: Annotated[dict[str, Any], merge_dicts] = Field(default_factory=dict)
    tool_rounds: int = 0
    max_tool_rounds: int = Field(default=10, ge=1)

    # Control flow, set by the model step
    should_continue: bool = True

    # Ambient context such as the working directory
    metadata: Annotated[dict[str, Any], merge_dicts] = Field(default_factory=dict)

    @property
    def working_directory(self) -> str | None:
        return self.metadata.get("working_directory")
