"""Ops Agent command-line interface.

Example Usage:
    $ python -m opsagent ask "What time is it in Tokyo?"
    $ python -m opsagent ask --verbose "What is 17 * 23?"
    $ python -m opsagent serve --port 8001

Environment variables are read from the process and from a local .env file;
see opsagent.settings for the full list.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from .bootstrap import create_agent_config
from .domain.entities import Message
from .domain.errors import AgentError
from .logging_config import configure_logging
from .orchestrator.agent import run_agent
from .settings import AgentSettings, SettingsError
from .tracing import init_tracing

logger = logging.getLogger(__name__)

DEFAULT_QUESTION = "What can you help me with?"


async def ask(settings: AgentSettings, question: str) -> int:
    """Run one agent turn and print the result. Returns the exit code."""
    config = create_agent_config(settings)

    print(f"Available tools: {', '.join(config.tools.list())}")
    print()
    print(f"User: {question}")
    print()

    try:
        result = await run_agent(config, [Message.user(question)])
    except AgentError as e:
        print(f"Agent error [{e.code.value}]: {e.message}", file=sys.stderr)
        return 1
    finally:
        close = getattr(config.llm, "close", None)
        if close is not None:
            await close()

    print("=== Agent Response ===")
    print(result.response)
    print()
    print(f"Tools used: {', '.join(t.name for t in result.tools_used) or 'none'}")
    print(f"Iterations: {result.iterations}")
    print(f"Tokens: {result.usage.input_tokens} in / {result.usage.output_tokens} out")
    return 0


def serve(settings: AgentSettings, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from .api.app import create_app

    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opsagent",
        description="LLM agent runtime with role-scoped tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask_parser = subparsers.add_parser("ask", help="Ask the agent a single question")
    ask_parser.add_argument("question", nargs="?", default=DEFAULT_QUESTION)
    ask_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log each agent iteration"
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address (default: HOST or 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default: PORT or 8001)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        settings = AgentSettings.from_env()
    except SettingsError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if getattr(args, "verbose", False):
        settings.verbose = True

    configure_logging(settings.log_level, settings.log_format)
    init_tracing(settings.tracing_enabled)

    try:
        if args.command == "ask":
            return asyncio.run(ask(settings, args.question))
        return serve(settings, args.host, args.port)
    except (SettingsError, ValueError) as e:
        # ValueError covers RoleToolConfigError raised at app startup
        logger.error(f"Startup failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
