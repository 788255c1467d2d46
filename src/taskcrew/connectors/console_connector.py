# src/taskcrew/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    if sys.stdout.isatty():
        sys.stdout.write("\033[1A\033[2K\r")
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
    else:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleMessenger:
    """OutboundMessenger that prints scheduler messages to the terminal."""

    async def send_text(
        self,
        *,
        text: str,
        room_id: str | None = None,
        to_user_id: str | None = None,
    ) -> None:
        where = room_id or "console"
        _print_ts(f"[{where}] {text}")


def run_console_loop(state: AppState) -> None:
    settings = state.settings
    user_id = str(getattr(settings, "console_user_id", "me"))
    room_id = str(getattr(settings, "console_room_id", "console"))
    prefix = str(getattr(settings, "command_prefix", "!"))

    logger.info("Console connector started (user=%s room=%s).", user_id, room_id)
    _print_ts(f"[CONSOLE] Type commands. Use {prefix}help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = input(f">>> {user_id}: ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_id}: {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, user_input, user_id=user_id, room_id=room_id)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = f"Not a command. Commands start with {prefix} (try {prefix}help)."
        _print_ts(reply)

    logger.info("Console connector finished.")
