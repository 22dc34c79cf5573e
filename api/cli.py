"""
CLI Client for the Orchestrator

A command-line interface for creating sessions, executing driver and actor
actions, and inspecting or ending sessions on an orchestrator.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from extensions.shared.client import OrchestratorClient
from extensions.shared.errors import ExtensionError
from extensions.shared.schemas import ExtensionCategory, Session
from extensions.shared.settings import ExtensionSettings


def parse_parameters(items: List[str]) -> Dict[str, Any]:
    """
    Parse key=value pairs into an action parameter mapping.

    Values are decoded as JSON where possible, otherwise kept as strings.

    Args:
        items: List of "key=value" strings

    Returns:
        Parameter dict
    """
    parameters: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"invalid parameter '{item}', expected key=value")
        key, raw = item.split("=", 1)
        try:
            parameters[key] = json.loads(raw)
        except json.JSONDecodeError:
            parameters[key] = raw
    return parameters


def create_session(url: str) -> str:
    with OrchestratorClient.create_for(url) as client:
        return client.session()


def execute_action(
    url: str,
    session_id: str,
    category: ExtensionCategory,
    extension_type: str,
    action: str,
    parameters: Dict[str, Any]
) -> dict:
    """
    Execute an action within an existing session.

    Returns:
        Outcome dict with success and message
    """
    with OrchestratorClient(url, session_id=session_id) as client:
        outcome = client.execute(category, extension_type, action, parameters)
    return outcome.model_dump(exclude_none=True)


def get_session(url: str, session_id: str) -> Session:
    with OrchestratorClient(url, session_id=session_id) as client:
        return client.session_info()


def end_session(url: str, session_id: str) -> None:
    with OrchestratorClient(url, session_id=session_id) as client:
        client.end_session()


def format_session(session: Session) -> str:
    """Render a session log for the terminal"""
    lines = [f"Session: {session.uuid}", f"Entries: {len(session.context.log)}"]
    for entry in session.context.log:
        lines.append(f"[{entry.timestamp.isoformat()}] {entry.category}: {entry.message}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CLI client for the orchestrator session and execute API"
    )

    # ORCHESTRATOR_HOST / ORCHESTRATOR_PORT
    default_url = ExtensionSettings().orchestrator_url
    parser.add_argument(
        "--url",
        default=default_url,
        help=f"Orchestrator base URL (default: {default_url})"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("session", help="Create a new session and print its id")

    execute = commands.add_parser("execute", help="Execute a driver or actor action")
    execute.add_argument("action", help="Action to execute")
    execute.add_argument("--session", required=True, help="Session id")
    target = execute.add_mutually_exclusive_group(required=True)
    target.add_argument("--driver", help="Driver type")
    target.add_argument("--actor", help="Actor type")
    execute.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Action parameter (repeatable; JSON values allowed)"
    )

    info = commands.add_parser("info", help="Show a session and its log")
    info.add_argument("session", help="Session id")

    end = commands.add_parser("end", help="End a session")
    end.add_argument("session", help="Session id")

    return parser


def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "session":
            print(create_session(args.url))

        elif args.command == "execute":
            if args.driver:
                category, extension_type = ExtensionCategory.DRIVER, args.driver
            else:
                category, extension_type = ExtensionCategory.ACTOR, args.actor
            outcome = execute_action(
                args.url,
                args.session,
                category,
                extension_type,
                args.action,
                parse_parameters(args.param)
            )
            print(json.dumps(outcome, indent=2))
            if not outcome["success"]:
                sys.exit(2)

        elif args.command == "info":
            print(format_session(get_session(args.url, args.session)))

        elif args.command == "end":
            end_session(args.url, args.session)
            print(f"Session {args.session} ended")

    except (ExtensionError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
