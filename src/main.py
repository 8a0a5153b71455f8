"""CLI entry point for the Aparatus booking assistant.

A terminal chat for development.  Like the web UI, the CLI keeps the
conversation itself and sends the whole history every turn; the agent
remembers nothing between turns.

Usage:
    uv run python -m src.main                          # anonymous caller
    uv run python -m src.main --cookie "<session>"     # act as a logged-in user
    uv run python -m src.main --debug                  # show tool calls and HTTP logs
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv
from langchain_core.messages import BaseMessage, HumanMessage

from src.agent import create_booking_agent
from src.api.streaming import provider_error_message
from src.services.marketplace_client import get_marketplace_client
from src.session import ANONYMOUS, SessionContext, resolve_session

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


async def _run_turn(
    agent,
    history: list[BaseMessage],
    session: SessionContext,
    *,
    show_tools: bool,
) -> list[BaseMessage]:
    """Stream one turn to stdout and return the updated history."""
    final_messages = history
    print("\nAparatus: ", end="", flush=True)
    async for mode, chunk in agent.astream(
        {"messages": history, "session": session, "steps": 0},
        stream_mode=["custom", "values"],
    ):
        if mode == "values":
            final_messages = chunk["messages"]
        elif chunk["type"] == "text-delta":
            print(chunk["delta"], end="", flush=True)
        elif show_tools and chunk["type"] == "tool-input-available":
            print(f"\n  [{chunk['toolName']} {chunk['input']}]", flush=True)
        elif show_tools and chunk["type"] == "tool-output-available":
            print(f"  [→ {chunk['output']}]", flush=True)
    print("\n")
    return list(final_messages)


async def _chat_loop(agent, session: SessionContext, *, show_tools: bool) -> None:
    """Read-eval loop; one event loop for the whole session so the model's
    async HTTP client is reused across turns."""
    history: list[BaseMessage] = []

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "Você: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nAté mais!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q", "sair"):
            print("\nAté mais! ✂️")
            break

        if user_input.lower() == "new":
            history = []
            print("\n>> Nova conversa iniciada.\n")
            continue

        try:
            history = await _run_turn(
                agent,
                history + [HumanMessage(content=user_input)],
                session,
                show_tools=show_tools,
            )
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\n{provider_error_message(e)}")
            print("     Digite 'new' para começar uma nova conversa.\n")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Aparatus booking assistant CLI")
    parser.add_argument(
        "--cookie",
        help="Marketplace session cookie header, to chat as a logged-in user",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages and every tool call",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    session = ANONYMOUS
    if args.cookie:
        session = resolve_session(get_marketplace_client(), {"cookie": args.cookie})

    print("\n" + "=" * 60)
    print("  Aparatus.ai - CLI Chat")
    print("=" * 60)
    if session.is_authenticated:
        print(f"  Logged in as {session.display_name}.")
    else:
        print("  Anonymous session (bookings require --cookie).")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    agent = create_booking_agent()
    try:
        asyncio.run(_chat_loop(agent, session, show_tools=args.debug))
    except KeyboardInterrupt:
        print("\n\nAté mais!")


if __name__ == "__main__":
    main()
