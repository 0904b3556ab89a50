"""CLI client for the Courier API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    List,
    Tuple,
    cast,
)

import httpx

from courier.common import (
    AnsiColors,
    colored_print,
)
from courier.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_input(prompt: str = "") -> Tuple[str, bool]:
    """
    Read one line from standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        return input(prompt).strip(), True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(
    endpoint: str,
    data: Dict[str, Any],
    max_retries: int = 5,
    base_url: str | None = None,
) -> Dict[str, Any]:
    """POST *data* to the API and return the JSON body, retrying while the server starts up."""
    api_url = f"{base_url or f'http://localhost:{settings.API_PORT}'}{endpoint}"

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=60.0) as client:
                response = client.post(api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError as e:
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                time.sleep(retry_delay)
                continue
            logger.error("API connection error: %s", str(e))
            return _error_body(f"Error connecting to API: {e}")
        except httpx.HTTPStatusError as e:
            logger.error("API request error: %s", str(e))
            detail = e.response.text
            return _error_body(f"API error ({e.response.status_code}): {detail}")
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            return _error_body(f"Error talking to API: {e}")

    return _error_body(f"Failed to connect to API after {max_retries} attempts")


def _error_body(message: str) -> Dict[str, Any]:
    return {"success": False, "response": message, "action": "show_error", "payload": {}}


def choose_option(options: List[Dict[str, Any]]) -> Dict[str, Any] | None:
    """Print numbered options and return the one the user picks (``None`` to cancel)."""
    for index, option in enumerate(options, start=1):
        subtitle = f" - {option['subtitle']}" if option.get("subtitle") else ""
        colored_print(f"  {index}. {option['title']}{subtitle}", AnsiColors.YELLOW)

    while True:
        choice, ok = get_user_input("Pick a number (empty to cancel): ")
        if not ok or not choice:
            return None
        if choice.isdigit() and 1 <= int(choice) <= len(options):
            return options[int(choice) - 1]
        colored_print("Please enter one of the numbers above.", AnsiColors.RED)


def render_response(response: Dict[str, Any]) -> None:
    """Print a command response."""
    color = AnsiColors.YELLOW if response.get("success") else AnsiColors.RED
    colored_print(response.get("response", "No response from API"), color)
    for warning in response.get("warnings", []):
        colored_print(f"(!) {warning}", AnsiColors.BLUE)
    if response.get("tools_used"):
        logger.debug("Tools used: %s", ", ".join(response["tools_used"]))


def run_command(command: str, app_context: Dict[str, Any]) -> Dict[str, Any]:
    """Send *command*; if the engine asks which option was meant, ask the user and resend."""
    response = call_api("/commands", {"command": command, "app_context": app_context})
    render_response(response)

    if response.get("action") == "show_clarification":
        clarification = response["payload"]["clarification"]
        option = choose_option(clarification["options"])
        if option is None:
            colored_print("Cancelled.", AnsiColors.BLUE)
            return response
        resumed_context = dict(app_context)
        resumed_context["clarification_response"] = {
            "selected_option": option,
            "original_reason": clarification["reason"],
        }
        response = call_api("/commands", {"command": command, "app_context": resumed_context})
        render_response(response)

    return response


def run_cli(
    user_id: str = "",
    screen: str = "chats",
    conversation_id: str | None = None,
) -> None:
    """Run the interactive shell that talks to the API."""
    if not user_id:
        colored_print("A user id is required (--user-id).", AnsiColors.RED)
        return

    app_context: Dict[str, Any] = {
        "current_user_id": user_id,
        "current_screen": screen,
        "current_conversation_id": conversation_id,
    }

    colored_print("\nCourier shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        command, ok = get_user_input()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if command.lower() in {"exit", "quit"}:
            break
        if not command:
            continue

        response = run_command(command, app_context)

        # Follow navigation so follow-up commands run "inside" the conversation
        target = response.get("payload", {}).get("conversation_id")
        if response.get("action") == "navigate" and target:
            app_context["current_screen"] = "conversation"
            app_context["current_conversation_id"] = target


if __name__ == "__main__":
    run_cli()
