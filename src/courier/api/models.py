"""
Pydantic models for Courier API requests and responses.

The command request/response bodies are the engine's own schema; this module adds the models of the
auxiliary endpoints.
"""

from typing import (
    Any,
    Dict,
    List,
)

from pydantic import (
    BaseModel,
    Field,
)

from courier.core.schema import (  # noqa: F401  re-exported for API consumers
    CommandRequest,
    CommandResponse,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str = "ok"
    planner: str
    tools: int


class ToolParameter(BaseModel):
    """One parameter of a registered tool."""

    name: str
    type: str
    required: bool
    default: Any = None


class ToolInfo(BaseModel):
    """A registered tool as shown by ``GET /tools``."""

    name: str
    description: str
    parameters: List[ToolParameter] = Field(default_factory=list)


class ToolListResponse(BaseModel):
    """Response of ``GET /tools``."""

    tools: List[ToolInfo]

    @classmethod
    def from_schemas(cls, schemas: Dict[str, Any]) -> "ToolListResponse":
        """Build from :func:`courier.tools.get_tool_schemas` output."""
        return cls(
            tools=[
                ToolInfo(
                    name=name,
                    description=schema["description"],
                    parameters=[
                        ToolParameter(name=param, **info)
                        for param, info in schema["parameters"].items()
                    ],
                )
                for name, schema in schemas.items()
            ]
        )
