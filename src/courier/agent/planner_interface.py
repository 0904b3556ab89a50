"""
Planner interface for Courier.

This module is the only place that *directly* calls an LLM.  Everything else (engine, tools,
retrieval) stays model-agnostic: chain planning goes through :meth:`BasePlanner.plan` and the
generative steps of tools (summaries, extraction) go through :meth:`BasePlanner.complete`.

We support these back-ends out of the box:

1. **OpenAI / Anthropic** via their async SDKs (requires env keys).
2. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.
3. **rules**: a deterministic pattern planner for development and demos without any model.

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Type,
)

import httpx

from courier.agent.chain_validator import is_information_question
from courier.agent.clarification import (
    extract_message_content,
    is_summary_command,
)
from courier.agent.prompts import build_system_prompt
from courier.common import truncate_text
from courier.config import settings
from courier.core.errors import PlannerError
from courier.core.schema import (
    AppContext,
    ChainPlan,
    ToolCall,
)
from courier.tools import ToolRegistry
from courier.tools.tool_call_parser import (
    parse_chain_plan,
    sanitize_json_string,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"openai"``
    """

    target = name or getattr(settings, "PLANNER", "openai")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    return cls()


def available_planners() -> List[str]:
    """Names accepted by :func:`load_planner`."""
    return sorted(_PLANNER_REGISTRY)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner that converts a command + context -> chain of tool calls."""

    temperature: float = 0.2

    async def plan(
        self, command: str, app_context: AppContext, registry: ToolRegistry | None = None
    ) -> ChainPlan:
        """Ask the model for a chain plan."""
        system_prompt = build_system_prompt(app_context, registry)
        content = await self.complete(system_prompt, command, json_output=True)
        logger.debug("%s planner response: %s", type(self).__name__, content)
        return parse_chain_plan(content)

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """Run :meth:`complete` and decode the JSON object in the answer."""
        content = await self.complete(system_prompt, user_prompt, json_output=True)
        try:
            parsed = json.loads(sanitize_json_string(content))
        except json.JSONDecodeError as exc:
            raise PlannerError(f"Model returned invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise PlannerError("Model returned JSON that is not an object")
        return parsed

    @abstractmethod
    async def complete(
        self, system_prompt: str, user_prompt: str, json_output: bool = False
    ) -> str:
        """
        Return the model's reply to *user_prompt*.

        Raises
        ------
        PlannerError
            If the backend is unreachable or returns nothing.
        """


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("tgi")
class TGIPlanner(BasePlanner):
    """TGI-based planner with httpx client."""

    async def complete(
        self, system_prompt: str, user_prompt: str, json_output: bool = False
    ) -> str:
        endpoint = getattr(settings, "TGI_ENDPOINT", "http://tgi:8080/generate")
        payload = {
            "inputs": f"{system_prompt}\n\nUser: {user_prompt}\nAssistant:",
            "parameters": {
                "max_new_tokens": 512,
                "temperature": self.temperature,
                "stop": ["User:", "</s>"],
            },
        }

        try:
            async with httpx.AsyncClient(timeout=settings.PLANNER_TIMEOUT_S) as client:
                resp = await client.post(endpoint, json=payload)
                resp.raise_for_status()
                return resp.json()["generated_text"]
        except httpx.HTTPError as e:
            logger.error("TGI request error: %s", str(e))
            raise PlannerError(f"Error calling TGI endpoint: {e}") from e
        except (KeyError, ValueError) as e:
            logger.error("TGI planner error: %s", str(e))
            raise PlannerError(f"Error processing TGI response: {e}") from e


@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI-based planner."""

    async def complete(
        self, system_prompt: str, user_prompt: str, json_output: bool = False
    ) -> str:
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        extra: Dict[str, Any] = {"response_format": {"type": "json_object"}} if json_output else {}

        try:
            resp = await client.chat.completions.create(
                model=getattr(settings, "OPENAI_MODEL", "gpt-4o-mini"),
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                **extra,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error("OpenAI planner error: %s", str(e))
            raise PlannerError(f"Error calling OpenAI: {e}") from e

        content = resp.choices[0].message.content
        if not content:
            logger.error("OpenAI planner returned empty response")
            raise PlannerError("Empty response from OpenAI")
        return content


@register_planner("anthropic")
class AnthropicPlanner(BasePlanner):
    """Anthropic Claude-based planner."""

    async def complete(
        self, system_prompt: str, user_prompt: str, json_output: bool = False
    ) -> str:
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        if json_output:
            system_prompt += "\n\nRespond with a single JSON object and no other text."

        try:
            response = await client.messages.create(
                model=getattr(settings, "ANTHROPIC_MODEL", "claude-3-5-haiku-latest"),
                max_tokens=2048,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=self.temperature,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Anthropic planner error: %s", str(e))
            raise PlannerError(f"Error calling Anthropic: {e}") from e

        # Handle different content block types from Anthropic API
        texts = [block.text for block in response.content if block.type == "text"]
        if not texts:
            raise PlannerError("Empty response from Anthropic")
        return "".join(texts)


# ---------------------------------------------------------------------------
# Offline planner
# ---------------------------------------------------------------------------
_PRONOUNS = {"i", "i'm", "i'll", "i've", "i'd"}

_SEND = re.compile(
    r"^\s*(?:please\s+)?"
    r"(?:send\s+(?:a\s+)?message\s+to|tell|message|text|let|remind|ping)\s+(?P<rest>.+)$",
    re.IGNORECASE,
)
_WITH_NAME = re.compile(r"\b(?:with|from|to)\s+(?P<name>[A-Za-z][\w.'-]*(?:\s+[A-Z][\w.'-]*)*)")
_OPEN = re.compile(
    r"^\s*(?:open|go to|show)\s+(?:my\s+)?(?:chat|conversation|messages)\s+with\s+"
    r"(?P<name>.+?)[.!?]*$",
    re.IGNORECASE,
)
_LATEST = re.compile(r"\b(latest|last|recent|most recent)\b", re.IGNORECASE)
_TRANSCRIPT_LINE = re.compile(r"^\[(?P<id>[^\]]+)\]\s+\S+\s+\S+\s+(?P<text>.*)$")


def _leading_name(rest: str) -> str:
    """Capitalised tokens at the start of *rest*, e.g. "John Smith" in "John Smith I'm late"."""
    words = rest.split()
    name = [words[0].strip(",:")]
    for word in words[1:]:
        token = word.strip(",:")
        if not token[:1].isupper() or token.lower() in _PRONOUNS:
            break
        name.append(token)
    return " ".join(name)


@register_planner("rules")
class RulePlanner(BasePlanner):
    """
    Deterministic planner for local development.

    Recognises the common command shapes with regular expressions and produces extractive
    "generations" so the whole pipeline can run without network access.
    """

    async def plan(
        self, command: str, app_context: AppContext, registry: ToolRegistry | None = None
    ) -> ChainPlan:
        text = command.strip()

        send = _SEND.match(text)
        if send:
            name = _leading_name(send.group("rest"))
            content = extract_message_content(text, name) or ""
            return ChainPlan(
                calls=[
                    ToolCall(tool="lookup_contacts", parameters={"query": name}),
                    ToolCall(
                        tool="send_message",
                        parameters={"recipient_id": "$prev.contact_id", "content": content},
                    ),
                ]
            )

        opened = _OPEN.match(text)
        if opened:
            return ChainPlan(
                calls=[
                    ToolCall(tool="lookup_contacts", parameters={"query": opened.group("name")}),
                    ToolCall(
                        tool="resolve_conversation",
                        parameters={"contact_identifier": "$prev.contact_id"},
                    ),
                ]
            )

        if is_summary_command(text):
            with_name = _WITH_NAME.search(text)
            if with_name:
                return ChainPlan(
                    calls=[
                        ToolCall(
                            tool="lookup_contacts", parameters={"query": with_name.group("name")}
                        ),
                        ToolCall(
                            tool="resolve_conversation",
                            parameters={"contact_identifier": "$prev.contact_id"},
                        ),
                        ToolCall(
                            tool="summarize_conversation",
                            parameters={"conversation_id": "$prev.conversation_id"},
                        ),
                    ]
                )
            if app_context.in_conversation and not _LATEST.search(text):
                return ChainPlan(calls=[ToolCall(tool="summarize_conversation", parameters={})])
            return ChainPlan(
                calls=[
                    ToolCall(tool="get_conversations", parameters={"limit": 1}),
                    ToolCall(
                        tool="summarize_conversation",
                        parameters={"conversation_id": "$prev.conversation_id"},
                    ),
                ]
            )

        if is_information_question(text):
            tool = (
                "analyze_conversation"
                if app_context.in_conversation
                else "analyze_conversations_multi"
            )
            return ChainPlan(calls=[ToolCall(tool=tool, parameters={"query": text})])

        raise PlannerError(
            "I couldn't work out what to do.",
            suggestion='Try "Tell <name> <message>" or "Summarize my chat with <name>".',
        )

    async def complete(
        self, system_prompt: str, user_prompt: str, json_output: bool = False
    ) -> str:
        if json_output:
            return json.dumps(self._extract(user_prompt))
        lines = [line for line in user_prompt.splitlines()[1:] if line.strip()]
        return "\n".join(truncate_text(line, 160) for line in lines[-5:]) or "No messages yet."

    @staticmethod
    def _extract(user_prompt: str) -> Dict[str, Any]:
        """Pick the transcript line sharing most words with the question."""
        question, _, transcript = user_prompt.partition("Messages:")
        words = {w for w in re.findall(r"[a-z0-9']+", question.lower()) if len(w) > 3}
        best_id, best_text, best_overlap = None, "", 0
        for line in transcript.splitlines():
            match = _TRANSCRIPT_LINE.match(line.strip())
            if not match:
                continue
            overlap = len(words & set(re.findall(r"[a-z0-9']+", match.group("text").lower())))
            if overlap > best_overlap:
                best_id, best_text, best_overlap = match.group("id"), match.group("text"), overlap
        if best_id is None:
            return {
                "answer": "I couldn't find that in the conversation.",
                "confidence": 0.1,
                "supporting_message_ids": [],
            }
        confidence = min(0.3 + 0.15 * best_overlap, 0.9)
        return {"answer": best_text, "confidence": confidence, "supporting_message_ids": [best_id]}
