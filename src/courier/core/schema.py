"""
Schema definitions for planner <-> engine <-> tool messages.

These data models serve as the contract between the planning LLM, the chain executor, individual
tools and the caller.  We keep them separate from runtime logic so they can be imported anywhere
without side-effects.
"""

from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# ---------------------------------------------------------------------------
# Tool contract
# ---------------------------------------------------------------------------
class NextAction(str, Enum):
    """The single control signal a tool result gives the executor."""

    CONTINUE = "continue"
    CLARIFICATION_NEEDED = "clarification_needed"
    COMPLETE = "complete"
    ERROR = "error"


class ClarificationReason(str, Enum):
    """Why a tool paused; also tells the resume path what kind of id was picked."""

    AMBIGUOUS_CONTACT = "ambiguous_contact"
    LOW_CONFIDENCE_CONTACT = "low_confidence_contact"
    AMBIGUOUS_CONVERSATION = "ambiguous_conversation"
    RETRIEVAL_DEGRADED = "retrieval_degraded"

    @property
    def selects_contact(self) -> bool:
        """True when the option ids are contact ids rather than conversation ids."""
        return self in (
            ClarificationReason.AMBIGUOUS_CONTACT,
            ClarificationReason.LOW_CONFIDENCE_CONTACT,
        )


class ClarificationOption(BaseModel):
    """One candidate the user can pick."""

    id: str = Field(..., description="Opaque handle returned verbatim on resume")
    title: str
    subtitle: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClarificationPayload(BaseModel):
    """What the caller needs to render a disambiguation dialog."""

    reason: ClarificationReason
    question: str
    options: List[ClarificationOption]


class ErrorInfo(BaseModel):
    """Short, user-presentable failure description."""

    code: str
    message: str
    suggestion: Optional[str] = None


class ToolResult(BaseModel):
    """Standardised result returned by every tool handler."""

    success: bool
    next_action: NextAction
    data: Dict[str, Any] = Field(default_factory=dict)
    clarification: Optional[ClarificationPayload] = None
    error: Optional[ErrorInfo] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_control_fields(self) -> "ToolResult":
        if self.next_action is NextAction.CLARIFICATION_NEEDED and self.clarification is None:
            raise ValueError("clarification_needed results must carry a clarification payload")
        if self.next_action is NextAction.ERROR and self.error is None:
            self.error = ErrorInfo(code="tool_failed", message="Tool reported an error")
        return self


class ToolCall(BaseModel):
    """A call that the planner wants the engine to execute."""

    tool: str = Field(..., description="Registered tool name")
    parameters: Dict[str, Any] = Field(
        default_factory=dict, description="Keyword arguments for the tool"
    )


class ChainPlan(BaseModel):
    """Ordered tool calls planned for one command."""

    calls: List[ToolCall] = Field(default_factory=list)
    source: Literal["planner", "clarification"] = "planner"

    @property
    def tool_names(self) -> List[str]:
        """Names of the planned tools, in order."""
        return [call.tool for call in self.calls]

    def __len__(self) -> int:
        return len(self.calls)


class ToolDefinition(BaseModel):
    """A registered tool: name, description, derived parameter schema and async handler."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    parameter_schema: Dict[str, Dict[str, Any]]
    handler: Callable[..., Awaitable[ToolResult]]

    @property
    def required_parameters(self) -> List[str]:
        """Names of the parameters the handler cannot run without."""
        return [name for name, info in self.parameter_schema.items() if info["required"]]


# ---------------------------------------------------------------------------
# Caller context
# ---------------------------------------------------------------------------
Screen = Literal["chats", "conversation", "profile", "settings"]


class ClarificationResponse(BaseModel):
    """The user's pick, sent back with the original command."""

    selected_option: ClarificationOption
    original_reason: ClarificationReason


class AppContext(BaseModel):
    """Everything the engine knows about the caller; the engine keeps nothing between calls."""

    current_screen: Screen = "chats"
    current_conversation_id: Optional[str] = None
    current_user_id: str = ""
    clarification_response: Optional[ClarificationResponse] = None

    @property
    def in_conversation(self) -> bool:
        """True when the user is looking at one specific conversation."""
        return self.current_screen == "conversation" and bool(self.current_conversation_id)


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------
class Contact(BaseModel):
    """A user record from the contact directory."""

    id: str
    display_name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None


class Conversation(BaseModel):
    """A conversation record from the conversation store."""

    id: str
    type: Literal["direct", "group"] = "direct"
    participants: List[str] = Field(default_factory=list)
    participant_names: Dict[str, str] = Field(default_factory=dict)
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    last_message_text: Optional[str] = None


class Message(BaseModel):
    """A message record from the conversation store."""

    id: str
    conversation_id: str
    sender_id: str
    sender_name: Optional[str] = None
    text: str = ""
    timestamp: datetime


class VectorHit(BaseModel):
    """A nearest-neighbour hit from the vector index."""

    message_id: str
    conversation_id: str
    score: float = Field(..., ge=0.0, le=1.0)
    text: str = ""
    sender_id: str = ""
    sender_name: Optional[str] = None
    timestamp: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Engine request / response
# ---------------------------------------------------------------------------
ResponseAction = Literal[
    "navigate", "show_summary", "show_clarification", "show_analysis", "show_error"
]


class CommandRequest(BaseModel):
    """A single invocation: free text plus context."""

    command: str = Field(..., description="What the user typed")
    app_context: AppContext


class CommandResponse(BaseModel):
    """What the caller renders."""

    success: bool
    response: str
    action: ResponseAction
    payload: Dict[str, Any] = Field(default_factory=dict)
    tools_used: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
