"""
Sequential execution of a validated chain plan.

The executor reacts to exactly one field of each result, ``next_action``:

    continue              -> run the next step (none left is a failure)
    clarification_needed  -> stop, hand the options back to the caller
    complete              -> stop, success
    error                 -> stop, failure

Anything a tool raises aborts the remaining chain.
"""

import logging
import time
from dataclasses import (
    dataclass,
    field,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from courier.agent.chain_validator import describe_chain_pattern
from courier.agent.parameter_mapper import resolve_parameters
from courier.agent.tool_executor import (
    clarification_result,
    execute_tool,
)
from courier.core.errors import (
    AmbiguousMatchError,
    CourierError,
)
from courier.core.schema import (
    AppContext,
    ChainPlan,
    ClarificationPayload,
    ErrorInfo,
    NextAction,
    ToolCall,
    ToolResult,
)
from courier.tools import (
    ToolContext,
    ToolRegistry,
    ToolServices,
)

logger = logging.getLogger(__name__)


class ChainState(str, Enum):
    """Lifecycle of one chain execution."""

    PLANNED = "planned"
    RUNNING = "running"
    CLARIFYING = "clarifying"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class StepRecord:
    """One executed step."""

    tool: str
    parameters: Dict[str, Any]
    result: Optional[ToolResult] = None
    error: Optional[ErrorInfo] = None
    elapsed_ms: float = 0.0


@dataclass
class ChainOutcome:
    """Terminal state of a chain plus everything that ran."""

    state: ChainState = ChainState.PLANNED
    steps: List[StepRecord] = field(default_factory=list)
    error: Optional[ErrorInfo] = None

    @property
    def tools_used(self) -> List[str]:
        """Names of the tools that were invoked, in order."""
        return [step.tool for step in self.steps]

    @property
    def final_result(self) -> Optional[ToolResult]:
        """Result of the last step that produced one."""
        for step in reversed(self.steps):
            if step.result is not None:
                return step.result
        return None

    @property
    def clarification(self) -> Optional[ClarificationPayload]:
        """The pending clarification when the chain paused."""
        if self.state is ChainState.CLARIFYING and self.final_result is not None:
            return self.final_result.clarification
        return None


class ChainExecutor:
    """Runs the steps of a :class:`ChainPlan` one after another."""

    def __init__(self, registry: ToolRegistry, tool_timeout_s: float | None = None):
        self.registry = registry
        self.tool_timeout_s = tool_timeout_s

    async def execute(
        self, plan: ChainPlan, app_context: AppContext, services: ToolServices
    ) -> ChainOutcome:
        """Execute *plan* and return its outcome; never raises for tool failures."""
        outcome = ChainOutcome(state=ChainState.RUNNING)
        logger.info(
            "Executing %s chain: %s", describe_chain_pattern(plan), " -> ".join(plan.tool_names)
        )

        previous_tool: str | None = None
        previous_data: Dict[str, Any] | None = None
        for position, call in enumerate(plan.calls):
            try:
                tool = self.registry.get(call.tool)
                parameters = resolve_parameters(call, tool, previous_tool, previous_data)
            except CourierError as exc:
                # Never invoked, so not recorded as a step
                return self._finish(outcome, ChainState.FAILED, exc.to_error_info())

            record = StepRecord(tool=call.tool, parameters=parameters)
            outcome.steps.append(record)
            started = time.perf_counter()
            try:
                ctx = ToolContext(
                    app_context=app_context,
                    services=services,
                    chain_position=position,
                    chain_length=len(plan),
                )
                result = await self._invoke(call.tool, record.parameters, ctx)
            except CourierError as exc:
                record.elapsed_ms = _elapsed_ms(started)
                record.error = exc.to_error_info()
                return self._finish(outcome, ChainState.FAILED, record.error)

            record.result = result
            record.elapsed_ms = _elapsed_ms(started)
            logger.info(
                "Step %d/%d %s -> %s (%.0f ms)",
                position + 1,
                len(plan),
                call.tool,
                result.next_action.value,
                record.elapsed_ms,
            )

            if result.next_action is NextAction.CONTINUE:
                if position == len(plan) - 1:
                    return self._finish(
                        outcome,
                        ChainState.FAILED,
                        ErrorInfo(
                            code="chain_exhausted",
                            message=f"'{call.tool}' expected another step, but the chain ended.",
                            suggestion="Try rephrasing the command.",
                        ),
                    )
                previous_tool, previous_data = call.tool, result.data
                continue
            if result.next_action is NextAction.CLARIFICATION_NEEDED:
                return self._finish(outcome, ChainState.CLARIFYING)
            if result.next_action is NextAction.COMPLETE:
                return self._finish(outcome, ChainState.COMPLETE)
            return self._finish(outcome, ChainState.FAILED, result.error)

        # Only reachable for an empty plan, which the validator rejects.
        return self._finish(
            outcome, ChainState.FAILED, ErrorInfo(code="validation_error", message="Empty plan")
        )

    async def _invoke(self, name: str, parameters: Dict[str, Any], ctx: ToolContext) -> ToolResult:
        try:
            return await execute_tool(
                self.registry, ToolCall(tool=name, parameters=parameters), ctx, self.tool_timeout_s
            )
        except AmbiguousMatchError as exc:
            return clarification_result(exc)

    @staticmethod
    def _finish(
        outcome: ChainOutcome, state: ChainState, error: ErrorInfo | None = None
    ) -> ChainOutcome:
        outcome.state = state
        outcome.error = error
        if state is ChainState.FAILED:
            logger.warning(
                "Chain failed after %s: %s", outcome.tools_used, error.message if error else "?"
            )
        else:
            logger.info("Chain finished in state %s after %s", state.value, outcome.tools_used)
        return outcome


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)
