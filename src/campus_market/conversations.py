"""Project per-listing messages into the current user's conversation list."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from campus_market.models import Conversation, Listing, Message, UserSummary

logger = logging.getLogger(__name__)


def _placeholder(user_id: int) -> UserSummary:
    return UserSummary(id=user_id, email="")


def _sender_summary(message: Message, listing: Listing) -> UserSummary:
    if message.sender is not None:
        return message.sender
    if listing.owner is not None and listing.owner.id == message.sender_id:
        return listing.owner
    return _placeholder(message.sender_id)


def sort_messages(messages: Iterable[Message]) -> List[Message]:
    """Chronological order, ties broken by ascending id."""

    return sorted(messages, key=lambda message: message.sort_key)


def derive_conversations(
    messages_by_listing: Mapping[int, Iterable[Message]],
    listings_by_id: Mapping[int, Listing],
    current_user_id: Optional[int],
) -> List[Conversation]:
    """Group messages by (listing, counterpart), most recent activity first.

    The counterpart of a message is its sender, unless the current user sent
    it, in which case it is the listing owner. When the owner replies on
    their own listing the reply belongs to every conversation on that
    listing. Messages on listings missing from ``listings_by_id`` are skipped.
    """

    if current_user_id is None:
        return []

    conversations: List[Conversation] = []
    for listing_id, raw_messages in messages_by_listing.items():
        messages = sort_messages(raw_messages)
        if not messages:
            continue
        listing = listings_by_id.get(listing_id)
        if listing is None:
            logger.debug("Skipping %d messages for unknown listing %s", len(messages), listing_id)
            continue

        owner_id = listing.seller_id
        groups: Dict[int, Tuple[UserSummary, List[Message]]] = {}
        owner_replies: List[Message] = []
        for message in messages:
            if message.sender_id != current_user_id:
                counterpart_id = message.sender_id
                summary = _sender_summary(message, listing)
            elif owner_id is None or owner_id == current_user_id:
                owner_replies.append(message)
                continue
            else:
                counterpart_id = owner_id
                summary = listing.owner if listing.owner is not None else _placeholder(owner_id)

            known, bucket = groups.get(counterpart_id, (summary, []))
            if not known.email and summary.email:
                known = summary
            bucket.append(message)
            groups[counterpart_id] = (known, bucket)

        for counterpart, bucket in groups.values():
            merged = sort_messages(bucket + owner_replies)
            conversations.append(
                Conversation(
                    id=str(listing_id),
                    listing_id=listing_id,
                    listing=listing,
                    counterpart=counterpart,
                    last_message=merged[-1],
                    messages=tuple(merged),
                )
            )

    conversations.sort(key=lambda conv: conv.last_message.sort_key, reverse=True)
    return conversations
