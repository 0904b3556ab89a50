"""
Tool registry for Courier.

This module provides a registry of tool definitions keyed by name and a decorator that registers
async handler functions into it.  Each handler takes a :class:`ToolContext` as its first argument,
followed by keyword parameters, and returns a :class:`~courier.core.schema.ToolResult`.

The parameter schema of a tool is derived from its handler signature, so the schema the planner
sees, the schema the chain validator checks and the arguments the handler accepts cannot drift
apart.
"""

import importlib
import inspect
import logging
import types
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    TypedDict,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from courier.core.errors import (
    DuplicateToolNameError,
    NotFoundError,
)
from courier.core.schema import (
    AppContext,
    NextAction,
    ToolDefinition,
)

if TYPE_CHECKING:  # pragma: no cover
    from courier.agent.planner_interface import BasePlanner
    from courier.config import Settings
    from courier.memory.retrieval import RetrievalAdapter
    from courier.memory.stores import (
        ContactDirectory,
        ConversationStore,
    )

logger = logging.getLogger(__name__)

BUILTIN_TOOL_MODULES = (
    "courier.tools.contacts",
    "courier.tools.messaging",
    "courier.tools.analysis",
    "courier.tools.clarification",
)


class ParameterInfo(TypedDict):
    """
    Information about a tool parameter.
    """

    type: str
    required: bool
    default: Any


class ToolSchema(TypedDict):
    """
    Schema for a tool function
    """

    description: str
    parameters: Mapping[str, ParameterInfo]


# ---------------------------------------------------------------------------
# Runtime context handed to every handler
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ToolServices:
    """External collaborators the tools talk to."""

    conversations: "ConversationStore"
    contacts: "ContactDirectory"
    retrieval: "RetrievalAdapter"
    llm: "BasePlanner"
    settings: "Settings"


@dataclass(frozen=True)
class ToolContext:
    """Per-step context: who is asking, from where, and where in the chain we are."""

    app_context: AppContext
    services: ToolServices
    chain_position: int = 0
    chain_length: int = 1

    @property
    def user_id(self) -> str:
        """The calling user."""
        return self.app_context.current_user_id

    @property
    def is_last_step(self) -> bool:
        """True when no planned step follows this one."""
        return self.chain_position >= self.chain_length - 1

    @property
    def next_action(self) -> NextAction:
        """``continue`` when a later step consumes this result, otherwise ``complete``."""
        return NextAction.COMPLETE if self.is_last_step else NextAction.CONTINUE


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """Holds ``name -> ToolDefinition``.  Built once per process; tools are never removed."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> ToolDefinition:
        """Add *tool*; raises :class:`DuplicateToolNameError` if the name is taken."""
        if tool.name in self._tools:
            raise DuplicateToolNameError(f"Tool '{tool.name}' is already registered.")
        logger.debug("Registering tool '%s'", tool.name)
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> ToolDefinition:
        """Look up *name*; raises :class:`NotFoundError` if absent."""
        tool = self._tools.get(name)
        if tool is None:
            raise NotFoundError(f"Tool '{name}' is not registered.")
        return tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        """Registered tool names in registration order."""
        return list(self._tools.keys())

    def definitions(self) -> List[ToolDefinition]:
        """All registered definitions in registration order."""
        return list(self._tools.values())


TOOL_REGISTRY = ToolRegistry()
"""Global registry of the built-in tools."""


def _type_name(annotation: Any) -> str:
    """Map an annotation to the schema type name, unwrapping ``X | None``."""
    origin = get_origin(annotation)
    if origin in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return _type_name(args[0])
        return "any"
    if origin is not None:
        annotation = origin
    return getattr(annotation, "__name__", str(annotation))


def build_tool_definition(
    name: str, fn: Callable, description: str | None = None
) -> ToolDefinition:
    """
    Derive a :class:`ToolDefinition` from an async handler.

    The first positional parameter is the :class:`ToolContext` and is not part of the schema.  The
    description defaults to the first paragraph of the handler's docstring.
    """
    if not inspect.iscoroutinefunction(fn):
        raise TypeError(f"Tool '{name}' handler must be an async function")

    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    params: Dict[str, Dict[str, Any]] = {}
    for index, (param_name, param) in enumerate(sig.parameters.items()):
        if index == 0:
            continue  # ToolContext
        required = param.default is inspect.Parameter.empty
        params[param_name] = dict(
            ParameterInfo(
                type=_type_name(type_hints.get(param_name, Any)),
                required=required,
                default=None if required else param.default,
            )
        )

    if description is None:
        doc = inspect.getdoc(fn) or ""
        description = doc.split("\n\n", 1)[0].replace("\n", " ").strip()

    return ToolDefinition(name=name, description=description, parameter_schema=params, handler=fn)


def register_tool(name: str, registry: ToolRegistry | None = None) -> Callable:
    """
    Register an async tool handler with the given name.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("my_tool")
        async def my_tool(ctx: ToolContext, query: str, limit: int = 10) -> ToolResult:
            ...

    Parameters
    ----------
    name: str
        The name of the tool.  This must be unique within the registry.
    registry: ToolRegistry | None
        Target registry; defaults to :data:`TOOL_REGISTRY`.

    Raises
    ------
    DuplicateToolNameError
        If a tool with the same name is already registered.
    """
    target = TOOL_REGISTRY if registry is None else registry

    def wrapper(fn: Callable) -> Callable:
        target.register(build_tool_definition(name, fn))
        return fn

    return wrapper


def load_builtin_tools() -> ToolRegistry:
    """Import the built-in tool modules (idempotent) and return the global registry."""
    for module_name in BUILTIN_TOOL_MODULES:
        importlib.import_module(module_name)
    return TOOL_REGISTRY


def get_tool_schemas(registry: ToolRegistry | None = None) -> Mapping[str, ToolSchema]:
    """Render parameter information for every registered tool."""
    target = TOOL_REGISTRY if registry is None else registry
    tool_schemas: Dict[str, ToolSchema] = {}
    for tool in target.definitions():
        parameters = {
            param_name: ParameterInfo(
                type=info["type"], required=info["required"], default=info["default"]
            )
            for param_name, info in tool.parameter_schema.items()
        }
        tool_schemas[tool.name] = {"description": tool.description, "parameters": parameters}
    return tool_schemas
