"""
mcp-bridge command: end-to-end: providers → orchestrator → chat model.

It:
1. Loads (or creates) the YAML config
2. Starts every configured tool provider (stdio subprocesses)
3. Registers their tools next to the built-in query tool
4. Sends one message, or runs an interactive prompt
5. Stops every provider on the way out

Usage:
    # Show the tools the model will see
    mcp-bridge --list-tools

    # One message
    mcp-bridge --message "How many rows are in the users table?"

    # Interactive
    mcp-bridge --config example/config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys

from mcp_bridge import config as config_module
from mcp_bridge.bridge import tool_prompt_instructions
from mcp_bridge.errors import MCPBridgeError
from mcp_bridge.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", ":q"}


def configure_logging(level: str, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )
    # Wire traffic is only interesting with --verbose.
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def interactive(orchestrator: Orchestrator, stdin=None, stdout=None) -> None:
    """Prompt loop. Errors are printed and the loop carries on."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    stdout.write("Type a message, or 'quit' to exit.\n")
    while True:
        stdout.write("> ")
        stdout.flush()
        line = stdin.readline()
        if not line:
            break
        message = line.strip()
        if not message:
            continue
        if message.lower() in EXIT_COMMANDS:
            break

        try:
            reply = orchestrator.process_message(message)
        except MCPBridgeError as e:
            stdout.write(f"Error: {e}\n")
            continue
        stdout.write(f"{reply}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-bridge",
        description="Chat with a model that can call stdio tool providers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-bridge --list-tools
  mcp-bridge --message "What tables are in the database?"
  mcp-bridge --config example/config.yaml
        """,
    )
    parser.add_argument("--config", "-c", type=str, default=None,
                        help=f"Config file (default: {config_module.default_config_path()})")
    parser.add_argument("--message", "-m", type=str, default=None,
                        help="Send one message, print the reply and exit")
    parser.add_argument("--list-tools", action="store_true",
                        help="Start the providers, list their tools and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg, created = config_module.load_or_create(args.config)
    except MCPBridgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    configure_logging(cfg.logging.level, args.verbose)
    if created:
        logger.info("Created a default config file; edit it to add tool providers.")

    orchestrator = Orchestrator(cfg)
    try:
        orchestrator.initialize()
    except MCPBridgeError as e:
        print(f"Error: failed to start bridge: {e}", file=sys.stderr)
        _close(orchestrator)
        return 1

    try:
        if args.list_tools:
            for descriptor in orchestrator.tools():
                print(tool_prompt_instructions(descriptor))
                print()
            return 0

        if args.message:
            try:
                print(orchestrator.process_message(args.message))
            except MCPBridgeError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            return 0

        interactive(orchestrator)
        return 0
    except KeyboardInterrupt:
        print("\nShutting down tool providers...")
        return 130
    finally:
        _close(orchestrator)


def _close(orchestrator: Orchestrator) -> None:
    try:
        orchestrator.close()
    except MCPBridgeError as e:
        logger.warning(f"Errors during shutdown: {e}")


if __name__ == "__main__":
    sys.exit(main())
