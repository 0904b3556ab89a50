"""
Command engine: one request in, one response out.

    command + context
      -> pre-flight checks
      -> resume call (clarification picked) | planner
      -> context defaults + chain validation
      -> chain execution
      -> CommandResponse

The engine holds no per-user state; two identical requests get the same treatment.
"""

import asyncio
import logging
from typing import (
    Any,
    Dict,
    List,
)

from courier.agent.chain_executor import (
    ChainExecutor,
    ChainOutcome,
    ChainState,
)
from courier.agent.chain_validator import (
    validate_chain,
    validate_preflight,
)
from courier.agent.clarification import (
    ClarificationState,
    build_resume_call,
    clarification_state,
)
from courier.agent.parameter_mapper import apply_context_defaults
from courier.agent.planner_interface import (
    BasePlanner,
    load_planner,
)
from courier.common import truncate_text
from courier.config import (
    Settings,
    settings as default_settings,
)
from courier.core.errors import (
    ChainTimeoutError,
    CourierError,
    PlannerError,
)
from courier.core.schema import (
    AppContext,
    ChainPlan,
    CommandRequest,
    CommandResponse,
    ErrorInfo,
    ResponseAction,
)
from courier.memory.retrieval import RetrievalAdapter
from courier.memory.stores import (
    InMemoryContactDirectory,
    InMemoryConversationStore,
    load_seed_data,
)
from courier.memory.vector_memory import (
    ChromaVectorIndex,
    VectorIndex,
)
from courier.tools import (
    ToolRegistry,
    ToolServices,
    load_builtin_tools,
)

logger = logging.getLogger(__name__)

NAVIGATE_TOOLS = {"send_message", "resolve_conversation"}
ANALYSIS_TOOLS = {"analyze_conversation", "analyze_conversations_multi"}


def action_for_tool(tool: str) -> ResponseAction:
    """UI action for a chain that completed with *tool*."""
    if tool in NAVIGATE_TOOLS:
        return "navigate"
    if tool in ANALYSIS_TOOLS:
        return "show_analysis"
    return "show_summary"


def response_text(tool: str, data: Dict[str, Any]) -> str:
    """User-facing sentence for a chain that completed with *tool*."""
    if tool == "send_message":
        name = data.get("recipient_name")
        return f"Message sent to {name}!" if name else "Message sent successfully!"
    if tool == "resolve_conversation":
        return f"Opening your conversation with {data.get('title') or 'them'}."
    if tool == "summarize_conversation":
        return f"Here's a summary of your conversation:\n\n{data.get('summary', '')}"
    if tool in ANALYSIS_TOOLS:
        return str(data.get("answer") or "I couldn't find an answer to that.")
    if tool == "get_conversations":
        lines = [f"- {c['title']} ({c['last_activity']})" for c in data.get("conversations", [])]
        header = f"You have {data.get('count', len(lines))} recent conversations:"
        return header + "\n" + "\n".join(lines)
    if tool == "get_messages":
        return f"Found {data.get('count', 0)} messages."
    if tool == "lookup_contacts":
        return f"Found {data.get('display_name', 'the contact')}."
    return "Done."


class CommandEngine:
    """Plans, validates and executes one command per call to :meth:`invoke`."""

    def __init__(
        self,
        registry: ToolRegistry,
        planner: BasePlanner,
        services: ToolServices,
        settings: Settings = default_settings,
    ):
        self.registry = registry
        self.planner = planner
        self.services = services
        self.settings = settings
        self.executor = ChainExecutor(registry, tool_timeout_s=settings.TOOL_TIMEOUT_S)

    async def invoke(self, request: CommandRequest) -> CommandResponse:
        """Handle one command (or one clarification resume)."""
        command = request.command.strip()
        ctx = request.app_context
        logger.info(
            "Command from %s on %s: '%s'",
            ctx.current_user_id or "?",
            ctx.current_screen,
            truncate_text(command, 60),
        )

        report = validate_preflight(command, ctx, self.settings.MAX_COMMAND_LENGTH)
        if not report.valid:
            return _error_response(
                ErrorInfo(
                    code="validation_error",
                    message=report.errors[0],
                    suggestion=report.suggestions[0] if report.suggestions else None,
                ),
                warnings=report.warnings,
            )

        try:
            plan = await self._plan(command, ctx)
            plan = apply_context_defaults(plan, ctx, self.registry)
            validate_chain(plan, self.registry, self.settings.MAX_CHAIN_LENGTH)
        except CourierError as exc:
            logger.warning("Command rejected before execution: %s", exc.message)
            return _error_response(exc.to_error_info(), warnings=report.warnings)

        outcome = await self.executor.execute(plan, ctx, self.services)
        return render_response(outcome, warnings=report.warnings)

    async def _plan(self, command: str, ctx: AppContext) -> ChainPlan:
        if clarification_state(ctx) is ClarificationState.RESOLVED:
            return ChainPlan(calls=[build_resume_call(command, ctx)], source="clarification")

        try:
            plan = await asyncio.wait_for(
                self.planner.plan(command, ctx, self.registry),
                timeout=self.settings.PLANNER_TIMEOUT_S,
            )
        except asyncio.TimeoutError as exc:
            raise ChainTimeoutError(
                "Planning took too long.", suggestion="Please try again."
            ) from exc
        except CourierError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Planner crashed")
            raise PlannerError(f"Planner failed: {exc}") from exc

        logger.info("Planned %s", plan.tool_names)
        return plan

    async def index_existing_messages(self) -> int:
        """Push every message of an in-memory store into the vector index."""
        store = self.services.conversations
        if not self.services.retrieval.available:
            return 0
        if not isinstance(store, InMemoryConversationStore):
            return 0
        count = 0
        for message in store.all_messages():
            conversation = await store.get_conversation(message.conversation_id)
            if conversation is None:
                continue
            await self.services.retrieval.index_message(message, conversation.participants)
            count += 1
        logger.info("Indexed %d existing messages", count)
        return count


def _error_response(
    error: ErrorInfo, warnings: List[str] | None = None, tools_used: List[str] | None = None
) -> CommandResponse:
    message = error.message if not error.suggestion else f"{error.message} {error.suggestion}"
    return CommandResponse(
        success=False,
        response=message,
        action="show_error",
        payload={"error": error.model_dump(mode="json")},
        tools_used=tools_used or [],
        warnings=warnings or [],
    )


def render_response(outcome: ChainOutcome, warnings: List[str] | None = None) -> CommandResponse:
    """Turn a chain outcome into what the caller renders."""
    warnings = list(warnings or [])
    result = outcome.final_result
    if result is not None and result.metadata.get("retrieval_degraded"):
        warnings.append("Message search is unavailable; used recent messages instead.")

    if outcome.state is ChainState.CLARIFYING and outcome.clarification is not None:
        return CommandResponse(
            success=True,
            response=outcome.clarification.question,
            action="show_clarification",
            payload={"clarification": outcome.clarification.model_dump(mode="json")},
            tools_used=outcome.tools_used,
            warnings=warnings,
        )

    if outcome.state is ChainState.COMPLETE and result is not None:
        tool = outcome.steps[-1].tool
        return CommandResponse(
            success=True,
            response=response_text(tool, result.data),
            action=action_for_tool(tool),
            payload=dict(result.data),
            tools_used=outcome.tools_used,
            warnings=warnings,
        )

    error = outcome.error or ErrorInfo(code="internal_error", message="Something went wrong.")
    return _error_response(error, warnings=warnings, tools_used=outcome.tools_used)


def create_engine(
    settings: Settings = default_settings,
    planner: BasePlanner | None = None,
    index: VectorIndex | None = None,
    connect_index: bool = True,
) -> CommandEngine:
    """
    Wire up an engine from settings.

    The conversation store and directory are in-memory, seeded from ``SEED_DATA_PATH`` when set.
    The Chroma index is optional: if it cannot be reached the engine runs with retrieval degraded.
    """
    registry = load_builtin_tools()
    planner = planner or load_planner(settings.PLANNER)

    if settings.SEED_DATA_PATH:
        directory, store = load_seed_data(settings.SEED_DATA_PATH)
    else:
        directory = InMemoryContactDirectory()
        store = InMemoryConversationStore(directory)

    if index is None and connect_index:
        try:
            index = ChromaVectorIndex()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Vector index unavailable, retrieval will be degraded: %s", exc)
            index = None

    services = ToolServices(
        conversations=store,
        contacts=directory,
        retrieval=RetrievalAdapter(index, store, settings),
        llm=planner,
        settings=settings,
    )
    return CommandEngine(registry, planner, services, settings)
