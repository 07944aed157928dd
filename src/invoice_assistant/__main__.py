"""Command-line entry point.

Usage:
    # Serve the HTTP API
    python -m invoice_assistant --port 8000

    # Run one chat turn against QuickBooks using a saved token file
    python -m invoice_assistant --message "show unpaid invoices" --tokens-file tokens.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog

from invoice_assistant.config import configure_logging
from invoice_assistant.credentials import Credentials

logger = structlog.get_logger(__name__)


def _load_credentials(path: str | None) -> Credentials | None:
    if not path:
        return None
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    credentials = Credentials.from_token_data(data)
    if credentials is None:
        logger.warning("token_file_invalid", path=path)
    return credentials


async def _run_message(message: str, tokens_file: str | None, provider: str | None) -> int:
    from invoice_assistant.chat import run_chat_turn
    from invoice_assistant.clients import create_llm_client

    credentials = _load_credentials(tokens_file)
    result = await run_chat_turn(
        message,
        credentials,
        llm_client=create_llm_client(provider),
    )
    print(result.text)
    for line in result.workflow_steps:
        print(f"  {line}")
    return 0 if result.status.value in ("ok", "partial") else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice_assistant",
        description="Chat assistant for QuickBooks invoices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                   # Serve on 127.0.0.1:8000
  %(prog)s --host 0.0.0.0 --port 9000 --reload
  %(prog)s --message "show invoice 1037" --tokens-file tokens.json
        """,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--message", "-m", help="Run a single chat turn instead of serving")
    parser.add_argument(
        "--tokens-file",
        help="JSON file with access_token and realmId for --message",
    )
    parser.add_argument(
        "--provider",
        choices=["openai", "claude", "gemini"],
        help="LLM provider for --message (default: LLM_PROVIDER)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    if args.message:
        try:
            return asyncio.run(_run_message(args.message, args.tokens_file, args.provider))
        except KeyboardInterrupt:
            logger.info("interrupted")
            return 130
        except Exception as e:
            logger.exception("chat_turn_error", error=str(e))
            return 1

    import uvicorn

    uvicorn.run(
        "invoice_assistant.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
