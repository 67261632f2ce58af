"""Command-line driver for the marketplace sync engine."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from typing import List, Optional, TextIO

from campus_market import gateway_client
from campus_market.config import (
    Settings,
    configure_collation,
    configure_logging,
    load_settings,
    resolve_state_path,
)
from campus_market.errors import NotAuthenticatedError, user_message
from campus_market.kv_store import JsonFileStore
from campus_market.listing_query import SortOrder
from campus_market.models import Conversation, Listing, Message
from campus_market.read_state import ReadStateTracker
from campus_market.session_store import SessionStore
from campus_market.sync_engine import SyncEngine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="campus-market", description="Campus marketplace client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Sign in and persist the session")
    login_parser.add_argument("email")
    login_parser.add_argument("--password", default=None, help="Prompted for when omitted")

    subparsers.add_parser("logout", help="Forget the stored session")
    subparsers.add_parser("whoami", help="Show the signed-in user")

    listings_parser = subparsers.add_parser("listings", help="Fetch and print listings")
    listings_parser.add_argument("--search", default=None, help="Match title, description or location")
    listings_parser.add_argument(
        "--sort",
        choices=[order.value for order in SortOrder],
        default=SortOrder.NEWEST.value,
    )
    listings_parser.add_argument("--mine", action="store_true", help="Only listings you own")

    messages_parser = subparsers.add_parser("messages", help="Print the messages on a listing")
    messages_parser.add_argument("listing_id", type=int)

    send_parser = subparsers.add_parser("send", help="Send a message on a listing")
    send_parser.add_argument("listing_id", type=int)
    send_parser.add_argument("text")

    conversations_parser = subparsers.add_parser("conversations", help="List your conversations")
    conversations_parser.add_argument("--unread", action="store_true", help="Only unread conversations")

    read_parser = subparsers.add_parser("read", help="Mark a conversation as read")
    read_parser.add_argument("conversation_id")
    return parser


def _format_listing(listing: Listing) -> str:
    owner = listing.owner.label if listing.owner is not None else "unknown seller"
    location = f" @ {listing.location}" if listing.location else ""
    return f"#{listing.id} {listing.title} - ${listing.price}{location} ({owner})"


def _format_message(message: Message, current_user_id: Optional[int]) -> str:
    who = "me" if message.sender_id == current_user_id else (
        message.sender.label if message.sender is not None else f"user {message.sender_id}"
    )
    body = message.content if message.content is not None else f"[image {message.image_url}]"
    state = " (failed)" if message.failed else (" (sending)" if message.is_local else "")
    return f"{message.created_at:%Y-%m-%d %H:%M} {who}: {body}{state}"


def _format_conversation(conversation: Conversation, unread: bool) -> str:
    marker = "*" if unread else " "
    preview = conversation.last_message.content or "[image]"
    return f"{marker} [{conversation.id}] {conversation.listing.title} with {conversation.counterpart.label}: {preview}"


def _emit(output: TextIO, line: str) -> None:
    output.write(line + "\n")


async def run(args: argparse.Namespace, settings: Settings, output: TextIO) -> int:
    store = JsonFileStore(resolve_state_path(settings))
    session_store = SessionStore(store)
    read_state = ReadStateTracker(store)

    async with gateway_client.create_http_session(settings.http_timeout_s) as http:
        engine = SyncEngine(
            http,
            settings.base_url,
            session_store,
            read_state,
            email_domain=settings.email_domain,
        )
        engine.restore()
        try:
            return await _dispatch(engine, args, output)
        except NotAuthenticatedError:
            _emit(output, "Not signed in; run `campus-market login EMAIL` first.")
            return 1


async def _dispatch(engine: SyncEngine, args: argparse.Namespace, output: TextIO) -> int:
    if args.command == "login":
        password = args.password if args.password is not None else getpass.getpass("Password: ")
        outcome = await engine.sign_in(args.email, password)
        _emit(output, outcome.message)
        return 0 if outcome.ok else 1

    if args.command == "logout":
        engine.sign_out()
        _emit(output, "Signed out.")
        return 0

    if args.command == "whoami":
        session = engine.session
        if not session.is_authenticated:
            _emit(output, "Not signed in.")
            return 1
        label = session.profile.label if session.profile is not None else "(profile unavailable)"
        _emit(output, f"user {session.user_id}: {label}")
        return 0

    if args.command == "listings":
        result = await engine.refresh_listings()
        if not result.ok:
            _emit(output, user_message(result.error, "Could not load listings"))
            return 1
        listings = engine.browse(args.search, SortOrder(args.sort))
        if args.mine:
            mine = {listing.id for listing in engine.my_listings()}
            listings = [listing for listing in listings if listing.id in mine]
        for listing in listings:
            _emit(output, _format_listing(listing))
        return 0

    if args.command == "messages":
        result = await engine.fetch_messages(args.listing_id)
        if not result.ok:
            _emit(output, user_message(result.error, "Could not load messages"))
            return 1
        for message in engine.messages(args.listing_id):
            _emit(output, _format_message(message, engine.current_user_id))
        return 0

    if args.command == "send":
        try:
            engine.send_message(args.listing_id, args.text)
        except ValueError as exc:
            _emit(output, str(exc))
            return 1
        await engine.wait_idle()
        failed = [message for message in engine.messages(args.listing_id) if message.failed]
        if failed:
            _emit(output, user_message(engine.last_error, "Message not delivered"))
            return 1
        _emit(output, "Sent.")
        return 0

    if args.command == "conversations":
        await engine.refresh_listings()
        result = await engine.refresh_conversations()
        if not result.ok:
            _emit(output, user_message(result.error, "Could not load conversations"))
            return 1
        conversations = engine.unread_conversations() if args.unread else engine.conversations()
        for conversation in conversations:
            _emit(output, _format_conversation(conversation, engine.is_unread(conversation)))
        return 0

    if args.command == "read":
        engine.mark_conversation_read(args.conversation_id)
        _emit(output, f"Marked {args.conversation_id} as read.")
        return 0

    raise ValueError(f"unsupported command: {args.command}")


def main(argv: List[str] | None = None, output: TextIO | None = None, settings: Settings | None = None) -> int:
    """Entry point for CLI commands."""

    parser = build_parser()
    try:
        args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    settings = settings or load_settings()
    configure_logging(settings.log_level)
    configure_collation()
    return asyncio.run(run(args, settings, output or sys.stdout))


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
