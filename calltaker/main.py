"""CLI entry point for the call-taker backend.

A terminal call simulation for testing and development.  For production,
use the FastAPI server (calltaker/server.py).

Usage:
    python -m calltaker.main --extension 4100 --agent-uid 7 --phone 3015550100
    python -m calltaker.main --debug ...                  # show HTTP calls
    python -m calltaker.main lookup --extension 4100 --agent-uid 7 --phone 3015550100
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict

from dotenv import load_dotenv

from calltaker.agent import CallTakerAgent, create_call_taker_agent
from calltaker.api.schemas import AgentMessageRequest
from calltaker.services.errors import CallTakerError

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("calltaker").setLevel(logging.DEBUG if debug else logging.INFO)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Call-taker agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument("--extension", default="", help="Dialled extension, e.g. 4100")
    parser.add_argument("--agent-uid", default="", help="Agent UID from agents.json")
    parser.add_argument("--phone", default="", help="Caller phone number")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("chat", help="Simulate a call (default)")
    sub.add_parser("lookup", help="Print the reservation lookup result and exit")
    return parser


async def _lookup(agent: CallTakerAgent, args: argparse.Namespace) -> None:
    result = await agent.lookup_reservation(args.extension, args.agent_uid, args.phone)
    print(json.dumps(asdict(result), indent=2, ensure_ascii=False))


async def _chat(agent: CallTakerAgent, args: argparse.Namespace) -> None:
    print("\n" + "=" * 60)
    print("  Call-Taker Agent - CLI Call Simulation")
    print("=" * 60)
    print(f"  Extension {args.extension or '-'}  Agent {args.agent_uid or '-'}  "
          f"Caller {args.phone or '-'}")
    print("  Type what the caller says and press Enter.")
    print("  Commands: 'quit' to hang up, 'new' for a new call.")
    print("=" * 60 + "\n")

    # First turn of every call is the call-connected event
    message = ""
    while True:
        request = AgentMessageRequest(
            message=message,
            extension=args.extension,
            agent_uid=args.agent_uid,
            caller_phone=args.phone,
        )
        try:
            reply = await agent.handle_message(request)
            print(f"\nAgent: {reply.response}\n")
            logger.debug("Lookup note: %s", reply.routing.reservation_lookup_note)
        except CallTakerError as e:
            logger.exception("Error processing turn")
            print(f"\nAgent: [error] {e}\n")

        try:
            message = (await asyncio.to_thread(input, "Caller: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nCall ended.")
            return

        if message.lower() in ("exit", "quit", "q"):
            print("\nCall ended.")
            return
        if message.lower() == "new":
            print("\n>> New call\n")
            message = ""


async def _run(args: argparse.Namespace) -> None:
    agent = create_call_taker_agent()
    try:
        if args.command == "lookup":
            await _lookup(agent, args)
        else:
            await _chat(agent, args)
    finally:
        await agent.aclose()


def main():
    """Run the CLI."""
    args = _build_parser().parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()
