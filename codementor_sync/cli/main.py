"""CLI: codementor-sync history, sweep, config validate, chat."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import load_config, validate_config
from ..core.code_blocks import parse_message_with_code_blocks
from ..core.conversation import ConversationStore
from ..core.session import clear_previous_user_data
from ..storage import open_store
from ..types import MODELS


def _load_valid_config(config_path: str | None = None):
    try:
        config = load_config(config_path)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)
    return config


def _get_store(config_path: str | None = None):
    config = _load_valid_config(config_path)
    return open_store(config.storage), config


def _get_conversation(args, store, config) -> ConversationStore:
    session_id = args.session or config.session_id or None
    conversation = ConversationStore(store, session_id=session_id, active_model=config.chat.default_model)
    conversation.hydrate()
    return conversation


def _print_message(msg) -> None:
    stamp = msg.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    label = "You" if msg.is_user else msg.sender
    print(f"[{stamp}] {label}:")
    for part in parse_message_with_code_blocks(msg.text):
        if part.type == "code":
            print("  ```")
            for line in part.content.splitlines():
                print(f"  {line}")
            print("  ```")
        elif part.content.strip():
            for line in part.content.strip().splitlines():
                print(f"  {line}")
    print()


def cmd_history_show(args):
    """Print stored history, merged or for a single model."""
    store, config = _get_store(args.config)
    try:
        conversation = _get_conversation(args, store, config)
        if args.model:
            messages = conversation.messages(args.model)
        else:
            messages = list(conversation.get_combined_view())

        if not messages:
            print(f"No history stored under {conversation.storage_key}.")
            return

        counts = ", ".join(f"{m}={len(conversation.messages(m))}" for m in MODELS)
        print(f"Session key: {conversation.storage_key} ({counts})")
        print("=" * 60)
        for msg in messages:
            _print_message(msg)
    finally:
        store.close()


def cmd_history_export(args):
    """Dump the persisted history as JSON."""
    store, config = _get_store(args.config)
    try:
        conversation = _get_conversation(args, store, config)
        text = json.dumps(conversation.serialize(), indent=2)
    finally:
        store.close()
    if args.output:
        Path(args.output).write_text(text + "\n")
        print(f"Exported {len(conversation)} entries to {args.output}")
    else:
        print(text)


def cmd_history_clear(args):
    """Empty both model histories for the session."""
    store, config = _get_store(args.config)
    try:
        conversation = _get_conversation(args, store, config)
        count = len(conversation)
        conversation.clear()
    finally:
        store.close()
    print(f"Cleared {count} entries from {conversation.storage_key}.")


def cmd_sweep(args):
    """Remove session data left behind by previous users."""
    store, _config = _get_store(args.config)
    try:
        removed = clear_previous_user_data(store)
    finally:
        store.close()
    if not removed:
        print("Nothing to remove.")
        return
    print(f"Removed {len(removed)} keys:")
    for key in removed:
        print(f"  - {key}")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Storage: {config.storage.backend}")
        print(f"  Default model: {config.chat.default_model}")
        print(f"  Engagement threshold: {config.engagement.threshold:g}")
        print(f"  Follow-up policy: {config.engagement.follow_up_policy}")
        print(f"  Cross-tab sync: {'on' if config.sync.enabled else 'off'} ({config.sync.channel_name})")
        print(f"  Backend: {config.backend.base_url}")


def cmd_chat(args):
    """Launch the split-screen TUI chat."""
    try:
        from ..tui.app import run_chat
    except ImportError:
        print("TUI dependencies not installed. Run: pip install textual", file=sys.stderr)
        sys.exit(1)

    _load_valid_config(args.config)
    run_chat(
        config_path=args.config,
        session_id=args.session,
        split_screen=True if args.split else None,
        model=args.model,
        session_type=args.session_type,
    )


def _configure_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    parser = argparse.ArgumentParser(
        prog="codementor-sync",
        description="Tutoring chat history, engagement tracking, and cross-tab sync",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More logging (-vv for debug)")

    subparsers = parser.add_subparsers(dest="command")

    # history
    history_parser = subparsers.add_parser("history", help="Inspect stored conversation history")
    history_sub = history_parser.add_subparsers(dest="history_command")
    show_parser = history_sub.add_parser("show", help="Print the stored history")
    show_parser.add_argument("--session", "-s", help="Session identifier")
    show_parser.add_argument("--model", "-m", choices=MODELS, help="Only this model's history")
    export_parser = history_sub.add_parser("export", help="Export history as JSON")
    export_parser.add_argument("--session", "-s", help="Session identifier")
    export_parser.add_argument("--output", "-o", help="Output file (default: stdout)")
    clear_parser = history_sub.add_parser("clear", help="Clear history for a session")
    clear_parser.add_argument("--session", "-s", help="Session identifier")

    # sweep
    subparsers.add_parser("sweep", help="Remove session data left by previous users")

    # chat
    chat_parser = subparsers.add_parser("chat", help="Interactive split-screen tutor chat")
    chat_parser.add_argument("--session", "-s", help="Session identifier")
    chat_parser.add_argument("--model", "-m", choices=MODELS, help="Model for single-model mode")
    chat_parser.add_argument("--split", action="store_true", help="Ask both models every turn")
    chat_parser.add_argument(
        "--session-type",
        default="lesson",
        help="Session type used to pick quiz or practice follow-ups",
    )

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "history":
        if args.history_command == "show":
            cmd_history_show(args)
        elif args.history_command == "export":
            cmd_history_export(args)
        elif args.history_command == "clear":
            cmd_history_clear(args)
        else:
            print("Usage: codementor-sync history show|export|clear")
            sys.exit(1)
    elif args.command == "sweep":
        cmd_sweep(args)
    elif args.command == "chat":
        cmd_chat(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: codementor-sync config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
