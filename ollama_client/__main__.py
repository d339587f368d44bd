"""Command-line access to an Ollama server.

Usage:
    python -m ollama_client models                      # installed models
    python -m ollama_client models --format json
    python -m ollama_client health                      # exit 0 when reachable
    python -m ollama_client chat --system "Be terse."   # interactive session
    python -m ollama_client show llama3.1:8b            # details and capabilities
    python -m ollama_client pull nomic-embed-text
    python -m ollama_client embed "some text" --model nomic-embed-text
    python -m ollama_client mcp-tools http://localhost:8000/mcp
    python -m ollama_client mcp-tools --stdio "uvx mcp-server-time"

Global options (before the subcommand):
    --base-url URL   --model NAME   --config FILE (JSON or YAML)   -v
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shlex
import sys
from typing import Sequence

from ollama_client.chat_session import ChatSession
from ollama_client.client import Client
from ollama_client.config import ClientConfig
from ollama_client.errors import LLMError
from ollama_client.mcp.http_client import MCPHttpClient
from ollama_client.mcp.stdio_client import MCPStdioClient
from ollama_client.streaming import StreamEvent, StreamingObserver


def _build_config(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig.from_file(args.config) if args.config else ClientConfig.from_env()
    overrides = {}
    if args.base_url:
        overrides["base_url"] = args.base_url.rstrip("/")
    if args.model:
        overrides["model"] = args.model
    return config.with_overrides(**overrides) if overrides else config


# ---------------------------------------------------------------------------
# subcommands
# ---------------------------------------------------------------------------


def cmd_models(args: argparse.Namespace) -> int:
    names = Client(_build_config(args)).list_models()
    if args.format == "json":
        print(json.dumps(names, indent=2))
    elif not names:
        print("No models installed.")
    else:
        for name in names:
            print(name)
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    config = _build_config(args)
    if Client(config).health():
        print(f"OK {config.base_url}")
        return 0
    print(f"UNREACHABLE {config.base_url}", file=sys.stderr)
    return 1


def _print_event(event: StreamEvent) -> None:
    if event.type == "token" and event.text:
        print(event.text, end="", flush=True)
    elif event.type == "final":
        print()


def cmd_chat(args: argparse.Namespace) -> int:
    session = ChatSession(
        Client(_build_config(args)),
        system=args.system,
        observer=StreamingObserver(_print_event),
    )
    print("Type /clear to reset, /exit or Ctrl-D to quit.")
    while True:
        try:
            line = input("> ").strip()
        except EOFError:
            print()
            return 0
        if not line:
            continue
        if line in ("/exit", "/quit"):
            return 0
        if line == "/clear":
            session.clear()
            continue
        session.say(line)


def cmd_show(args: argparse.Namespace) -> int:
    info = Client(_build_config(args)).show_model(args.name, verbose=args.verbose_info)
    if args.format == "json":
        print(json.dumps(info, indent=2, default=str))
        return 0
    details = info.get("details") or {}
    print(f"{'model:':<20}{args.name}")
    for key in ("family", "parameter_size", "quantization_level"):
        if details.get(key):
            print(f"{key + ':':<20}{details[key]}")
    enabled = [name for name, on in info["capabilities"].items() if on]
    print(f"{'capabilities:':<20}{', '.join(enabled) or 'none'}")
    return 0


def cmd_pull(args: argparse.Namespace) -> int:
    Client(_build_config(args)).pull_model(args.name)
    print(f"pulled {args.name}")
    return 0


def cmd_embed(args: argparse.Namespace) -> int:
    vector = Client(_build_config(args)).embed(args.text)
    print(json.dumps(vector))
    return 0


async def _list_mcp_tools(target: str, timeout: float, *, stdio: bool = False) -> list[dict[str, object]]:
    if stdio:
        command, *command_args = shlex.split(target)
        mcp: MCPHttpClient | MCPStdioClient = MCPStdioClient(command, command_args, timeout=timeout)
    else:
        mcp = MCPHttpClient(target, timeout=timeout)
    async with mcp:
        tools = await mcp.tools()
    return [
        {"name": t.name, "description": t.description, "input_schema": t.input_schema}
        for t in tools
    ]


def cmd_mcp_tools(args: argparse.Namespace) -> int:
    if bool(args.url) == bool(args.stdio):
        print("error: give either an MCP URL or --stdio COMMAND", file=sys.stderr)
        return 2
    if args.stdio:
        tools = asyncio.run(_list_mcp_tools(args.stdio, args.timeout, stdio=True))
    else:
        tools = asyncio.run(_list_mcp_tools(args.url, args.timeout))
    if args.format == "json":
        print(json.dumps(tools, indent=2))
        return 0
    if not tools:
        print("No tools exposed.")
        return 0
    width = max(len(str(t["name"])) for t in tools)
    for t in tools:
        print(f"{str(t['name']):<{width}}  {t['description']}")
    return 0


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m ollama_client", description="Ollama client CLI")
    parser.add_argument("--base-url", help="Server URL (default: $OLLAMA_BASE_URL or http://localhost:11434)")
    parser.add_argument("--model", help="Model name (default: $OLLAMA_MODEL or llama3.1:8b)")
    parser.add_argument("--config", help="JSON or YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    models_p = sub.add_parser("models", help="List installed models")
    models_p.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    sub.add_parser("health", help="Check that the server answers")

    chat_p = sub.add_parser("chat", help="Interactive chat with streamed replies")
    chat_p.add_argument("--system", help="System prompt")

    show_p = sub.add_parser("show", help="Show model details and inferred capabilities")
    show_p.add_argument("name", help="Model name")
    show_p.add_argument("--verbose-info", action="store_true", help="Ask the server for full model info")
    show_p.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    pull_p = sub.add_parser("pull", help="Download a model onto the server")
    pull_p.add_argument("name", help="Model name")

    embed_p = sub.add_parser("embed", help="Print the embedding vector of a text as JSON")
    embed_p.add_argument("text", help="Text to embed")

    mcp_p = sub.add_parser("mcp-tools", help="List the tools of an MCP server (HTTP URL or --stdio command)")
    mcp_p.add_argument("url", nargs="?", help="MCP endpoint URL")
    mcp_p.add_argument("--stdio", metavar="COMMAND", help="Launch a local MCP server command instead")
    mcp_p.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
    mcp_p.add_argument("--format", choices=["table", "json"], default="table", help="Output format")
    return parser


COMMANDS = {
    "models": cmd_models,
    "health": cmd_health,
    "chat": cmd_chat,
    "show": cmd_show,
    "pull": cmd_pull,
    "embed": cmd_embed,
    "mcp-tools": cmd_mcp_tools,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return COMMANDS[args.command](args)
    except LLMError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
