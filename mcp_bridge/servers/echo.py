"""
Echo tool provider: minimal reference implementation.

Use this as a template for building new providers. It is also the
provider the test-suite drives as a real subprocess.

Tools:
  - echo:  returns its ``text`` argument unchanged
  - sleep: waits ``seconds`` then returns ``text``

Launch:
    python -m mcp_bridge.servers.echo [--banner TEXT] [--silent]

Test:
    echo '{"jsonrpc":"2.0","method":"tools/list","params":{},"id":1}' | python -m mcp_bridge.servers.echo
"""

import argparse
import sys
import time

from mcp_bridge.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input text. Useful for testing."
    parameters = {
        "text": {
            "type": "string",
            "description": "The text to echo back",
        },
    }
    required = ["text"]

    def handle(self, params: dict) -> str:
        text = params.get("text")
        if not isinstance(text, str):
            raise ValueError("text must be a string")
        return text


class SleepTool(ToolHandler):
    name = "sleep"
    description = "Waits for the given number of seconds, then returns text."
    parameters = {
        "seconds": {"type": "number", "description": "How long to wait"},
        "text": {"type": "string", "description": "What to return afterwards"},
    }
    required = ["seconds"]

    def handle(self, params: dict) -> str:
        time.sleep(float(params.get("seconds", 0)))
        return str(params.get("text", "done"))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Echo tool provider.")
    parser.add_argument("--name", default="echo", help="Server name reported by initialize")
    parser.add_argument("--banner", default=None, help="Non-protocol line printed on startup")
    parser.add_argument("--silent", action="store_true", help="Read requests but never answer")
    args = parser.parse_args(argv)

    if args.silent:
        for _ in sys.stdin:
            continue
        return

    server = StdioToolServer(args.name, banner=args.banner)
    server.register(EchoTool())
    server.register(SleepTool())
    server.run()


if __name__ == "__main__":
    main()
