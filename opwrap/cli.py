"""
opwrap command line.

Usage:
    opwrap run git push origin main     # run a wrapped tool
    opwrap tools                        # list wrapped tools
    opwrap context                      # show local / ci(<platform>)
    opwrap status                       # session status
    opwrap login | logout               # manage the cached local session
    opwrap serve --port 8000            # MCP server
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from .config import load_config
from .errors import OpwrapError, ProgramNotFound, SupervisorInterrupted
from .supervisor import Supervisor

EXIT_SUPERVISOR_ERROR = 125
EXIT_PROGRAM_NOT_FOUND = 127


def _print_rejection(attempt: int, max_attempts: int, reason: str) -> None:
    print(f"❌ 1Password sign-in rejected ({attempt}/{max_attempts}): {reason}", file=sys.stderr)


def cmd_run(supervisor: Supervisor, args) -> int:
    tool_args = list(args.args)
    if tool_args and tool_args[0] == "--":
        tool_args = tool_args[1:]
    return supervisor.run(args.tool, tool_args).exit_code


def cmd_tools(supervisor: Supervisor, args) -> int:
    tools = supervisor.describe_tools()
    if args.json:
        print(json.dumps(tools, indent=2))
        return 0

    print(f"🔧 Wrapped tools ({len(tools)})")
    print("─" * 40)
    for tool in tools:
        print(f"  {tool['name']:<8} {tool['strategy']:<12} {tool['description']}")
        for destination, ref in tool["bindings"].items():
            print(f"      {destination} ← {ref}")
    return 0


def cmd_context(supervisor: Supervisor, args) -> int:
    print(supervisor.context())
    return 0


def cmd_status(supervisor: Supervisor, args) -> int:
    status = supervisor.status()
    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"🔐 Context: {status['context']}")
    if status["source"] == "interactive":
        if not status["cached"]:
            print("   Session: none cached (run `opwrap login`)")
        elif status["valid"]:
            print(f"   Session: ✅ valid (since {status['acquired_at']})")
        else:
            print("   Session: ❌ expired")
    else:
        icon = "✅" if status["credential_present"] else "❌"
        print(f"   Service account: {icon} {status['credential_env']}")
    return 0


def cmd_login(supervisor: Supervisor, args) -> int:
    handle = supervisor.login()
    state = "Reusing cached session" if handle.cached else "Signed in"
    print(f"✅ {state}", file=sys.stderr)
    return 0


def cmd_logout(supervisor: Supervisor, args) -> int:
    if supervisor.logout():
        print("✅ Signed out", file=sys.stderr)
    else:
        print("ℹ️ No cached session", file=sys.stderr)
    return 0


def cmd_serve(supervisor: Supervisor, args) -> int:
    from .server import serve

    serve(supervisor, host=args.host, port=args.port)
    return 0


COMMANDS = {
    "run": cmd_run,
    "tools": cmd_tools,
    "context": cmd_context,
    "status": cmd_status,
    "login": cmd_login,
    "logout": cmd_logout,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opwrap",
        description="Run CLI tools with 1Password credentials scoped to a single process.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    parser.add_argument("--config", help="Config file (default: $OPWRAP_CONFIG or ~/.config/opwrap/config.json)")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a wrapped tool")
    run.add_argument("tool", help="Registered tool name (see `opwrap tools`)")
    run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the tool unchanged")

    tools = sub.add_parser("tools", help="List wrapped tools")
    tools.add_argument("--json", action="store_true")

    sub.add_parser("context", help="Show the detected execution context")

    status = sub.add_parser("status", help="Show session status")
    status.add_argument("--json", action="store_true")

    sub.add_parser("login", help="Sign in and cache the session")
    sub.add_parser("logout", help="Sign out and forget the cached session")

    serve = sub.add_parser("serve", help="Run the MCP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(Path(args.config) if args.config else None)
        supervisor = Supervisor(config, on_rejection=_print_rejection)
        return COMMANDS[args.command](supervisor, args)
    except SupervisorInterrupted as e:
        return 128 + e.signum
    except KeyboardInterrupt:
        # Ctrl-C before any scope exists, e.g. at the sign-in prompt
        print(file=sys.stderr)
        return 128 + signal.SIGINT
    except ProgramNotFound as e:
        print(f"opwrap: {e}", file=sys.stderr)
        return EXIT_PROGRAM_NOT_FOUND
    except OpwrapError as e:
        print(f"opwrap: {e}", file=sys.stderr)
        return EXIT_SUPERVISOR_ERROR


if __name__ == "__main__":
    sys.exit(main())
