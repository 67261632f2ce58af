"""Client-side state container for listings, messages and conversations.

The engine is driven from a single asyncio event loop. Gateway awaits are the
only suspension points and every mutation happens on the loop after a
response arrives, so the collections below need no locking.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

import aiohttp

from campus_market import gateway_client
from campus_market.conversations import derive_conversations, sort_messages
from campus_market.errors import GatewayError, GatewayResult, NotAuthenticatedError, user_message
from campus_market.listing_query import SortOrder, browse
from campus_market.models import Conversation, Listing, ListingDraft, Message, MessageKind, Session, UserSummary
from campus_market.read_state import ReadStateTracker
from campus_market.redact import redact_text
from campus_market.session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_DOMAIN = "utdallas.edu"


class ListingsState(str, enum.Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class AuthOutcome:
    ok: bool
    message: str
    user: Optional[UserSummary] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    def __init__(
        self,
        http: aiohttp.ClientSession,
        base_url: str,
        session_store: SessionStore,
        read_state: ReadStateTracker,
        *,
        email_domain: str = DEFAULT_EMAIL_DOMAIN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http
        self._base_url = base_url
        self._session = session_store
        self._read_state = read_state
        self._email_domain = email_domain.lstrip("@").lower()
        self._clock = clock

        self._listings: List[Listing] = []
        self._messages: Dict[int, List[Message]] = {}
        self._conversation_listings: Dict[int, Listing] = {}
        self._deliveries: Dict[int, asyncio.Task] = {}
        self._next_local_id = -1

        self.listings_state = ListingsState.EMPTY
        self.last_error: Optional[GatewayError] = None

    # -- session -----------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session.session

    @property
    def current_user_id(self) -> Optional[int]:
        return self._session.user_id

    def restore(self) -> Session:
        session = self._session.restore()
        self._read_state.load(session.user_id)
        return session

    def _require_user(self) -> int:
        user_id = self._session.user_id
        if user_id is None:
            raise NotAuthenticatedError("sign in first")
        return user_id

    def _clear_user_caches(self) -> None:
        for task in self._deliveries.values():
            task.cancel()
        self._deliveries.clear()
        self._messages.clear()
        self._conversation_listings.clear()

    async def sign_in(self, email: str, password: str) -> AuthOutcome:
        email = email.strip()
        if not email or "@" not in email or not password:
            return AuthOutcome(False, "Enter a valid email and password")

        result = await gateway_client.sign_in(self._http, self._base_url, email, password)
        if not result.ok:
            self.last_error = result.error
            return AuthOutcome(False, user_message(result.error, "Login failed"))

        response = result.unwrap()
        if self._session.user_id != response.user.id:
            self._clear_user_caches()
        self._session.sign_in(response.token, response.user)
        self._read_state.load(response.user.id)
        return AuthOutcome(True, response.message or "Login successful", response.user)

    async def sign_up(self, email: str, password: str, name: str) -> AuthOutcome:
        email = email.strip()
        suffix = f"@{self._email_domain}"
        if not email.lower().endswith(suffix) or len(email) <= len(suffix) or not password:
            return AuthOutcome(False, f"Use your {suffix} email address and a password")

        result = await gateway_client.sign_up(self._http, self._base_url, email, password, name.strip())
        if not result.ok:
            self.last_error = result.error
            return AuthOutcome(False, user_message(result.error, "Signup failed"))
        return AuthOutcome(True, result.value or "Account created; check your email to verify it")

    async def forgot_password(self, email: str) -> AuthOutcome:
        result = await gateway_client.forgot_password(self._http, self._base_url, email.strip())
        if not result.ok:
            self.last_error = result.error
            return AuthOutcome(False, user_message(result.error, "Could not send reset email"))
        return AuthOutcome(True, result.value or "Check your email for a reset link")

    def sign_out(self) -> None:
        self._clear_user_caches()
        self._session.sign_out()
        self._read_state.load(None)

    async def update_profile(
        self,
        email: str,
        name: Optional[str] = None,
        bio: Optional[str] = None,
        image: Optional[bytes] = None,
    ) -> GatewayResult[UserSummary]:
        user_id = self._require_user()
        result = await gateway_client.update_profile(
            self._http,
            self._base_url,
            user_id,
            email=email,
            name=name,
            bio=bio,
            image=image,
            headers=self._session.authorization_header(),
        )
        if not result.ok:
            self.last_error = result.error
            return result
        if self._session.user_id == user_id:
            self._session.update_profile(result.unwrap())
        return result

    async def fetch_user(self, user_id: int) -> GatewayResult[UserSummary]:
        return await gateway_client.fetch_user(
            self._http, self._base_url, user_id, headers=self._session.authorization_header()
        )

    async def register_push_token(self, token: str) -> GatewayResult[None]:
        user_id = self._require_user()
        result = await gateway_client.register_push_token(
            self._http, self._base_url, user_id, token, headers=self._session.authorization_header()
        )
        if not result.ok:
            logger.warning("Push token registration failed: %s", redact_text(str(result.error)))
        return result

    # -- listings ----------------------------------------------------------

    @property
    def listings(self) -> Tuple[Listing, ...]:
        return tuple(self._listings)

    def listing(self, listing_id: int) -> Optional[Listing]:
        for listing in self._listings:
            if listing.id == listing_id:
                return listing
        return self._conversation_listings.get(listing_id)

    def browse(self, query: Optional[str] = None, order: SortOrder = SortOrder.NEWEST) -> List[Listing]:
        return browse(self._listings, query, order)

    def listings_by_owner(self, user_id: int) -> List[Listing]:
        return [listing for listing in self._listings if listing.seller_id == user_id]

    def my_listings(self) -> List[Listing]:
        user_id = self._session.user_id
        if user_id is None:
            return []
        return self.listings_by_owner(user_id)

    async def refresh_listings(self) -> GatewayResult[List[Listing]]:
        self.listings_state = ListingsState.LOADING
        result = await gateway_client.fetch_listings(
            self._http, self._base_url, headers=self._session.authorization_header()
        )
        if not result.ok:
            self.last_error = result.error
            self.listings_state = ListingsState.ERROR
            return result
        self._listings = list(result.unwrap())
        self.listings_state = ListingsState.LOADED
        return result

    async def create_listing(self, draft: ListingDraft) -> GatewayResult[Listing]:
        self._require_user()
        result = await gateway_client.create_listing(
            self._http, self._base_url, draft, headers=self._session.authorization_header()
        )
        if not result.ok:
            self.last_error = result.error
            return result
        self._listings.append(result.unwrap())
        return result

    def _replace_listing(self, updated: Listing) -> None:
        for index, listing in enumerate(self._listings):
            if listing.id == updated.id:
                self._listings[index] = updated
        if updated.id in self._conversation_listings:
            self._conversation_listings[updated.id] = updated

    async def update_listing(
        self,
        listing_id: int,
        *,
        title: str,
        price: Decimal,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> GatewayResult[Listing]:
        self._require_user()
        result = await gateway_client.update_listing(
            self._http,
            self._base_url,
            listing_id,
            title=title,
            price=price,
            description=description,
            location=location,
            headers=self._session.authorization_header(),
        )
        if not result.ok:
            self.last_error = result.error
            return result
        self._replace_listing(result.unwrap())
        return result

    async def delete_listing(self, listing_id: int) -> GatewayResult[None]:
        self._require_user()
        result = await gateway_client.delete_listing(
            self._http, self._base_url, listing_id, headers=self._session.authorization_header()
        )
        if not result.ok:
            self.last_error = result.error
            return result
        self._listings = [listing for listing in self._listings if listing.id != listing_id]
        return result

    async def record_listing_click(self, listing_id: int) -> GatewayResult[Optional[int]]:
        result = await gateway_client.record_listing_click(
            self._http, self._base_url, listing_id, headers=self._session.authorization_header()
        )
        count = result.value if result.ok else None
        if count is not None:
            for index, listing in enumerate(self._listings):
                if listing.id == listing_id:
                    self._listings[index] = dataclasses.replace(listing, click_count=count)
        return result

    # -- messages ----------------------------------------------------------

    def messages(self, listing_id: int) -> List[Message]:
        return sort_messages(self._messages.get(listing_id, ()))

    @property
    def pending_deliveries(self) -> int:
        return len(self._deliveries)

    def _allocate_local_id(self) -> int:
        local_id = self._next_local_id
        self._next_local_id -= 1
        return local_id

    def send_message(self, listing_id: int, content: str) -> Message:
        """Append an optimistic message and deliver it in the background.

        Returns the local entry immediately. When the server confirms it, the
        entry is replaced by the confirmed message; when delivery fails it
        stays in place with ``failed=True`` and can be re-sent with
        :meth:`retry_message`.
        """

        user_id = self._require_user()
        text = content.strip()
        if not text:
            raise ValueError("message content must not be blank")

        optimistic = Message(
            id=self._allocate_local_id(),
            content=text,
            kind=MessageKind.TEXT,
            created_at=self._clock(),
            sender_id=user_id,
            listing_id=listing_id,
            sender=self._session.profile,
        )
        self._messages.setdefault(listing_id, []).append(optimistic)
        self._schedule_delivery(optimistic, user_id)
        return optimistic

    def retry_message(self, listing_id: int, local_id: int) -> Message:
        user_id = self._require_user()
        bucket = self._messages.get(listing_id, [])
        for index, message in enumerate(bucket):
            if message.id == local_id:
                if not message.failed:
                    raise ValueError(f"message {local_id} has not failed")
                resent = dataclasses.replace(message, failed=False)
                bucket[index] = resent
                self._schedule_delivery(resent, user_id)
                return resent
        raise KeyError(local_id)

    def _schedule_delivery(self, message: Message, user_id: int) -> None:
        task = asyncio.get_running_loop().create_task(
            self._deliver(message, user_id, self._session.authorization_header())
        )
        self._deliveries[message.id] = task
        task.add_done_callback(lambda done, local_id=message.id: self._forget_delivery(local_id, done))

    def _forget_delivery(self, local_id: int, task: asyncio.Task) -> None:
        if self._deliveries.get(local_id) is task:
            del self._deliveries[local_id]

    async def _deliver(self, message: Message, user_id: int, headers: Dict[str, str]) -> GatewayResult[Message]:
        result = await gateway_client.send_message(
            self._http,
            self._base_url,
            content=message.content or "",
            user_id=user_id,
            listing_id=message.listing_id,
            headers=headers,
        )
        if self._session.user_id != user_id:
            logger.info("Dropping delivery result for signed-out user %s", user_id)
            return result
        if result.ok:
            self._reconcile(message.listing_id, message.id, result.unwrap())
        else:
            self.last_error = result.error
            self._mark_failed(message.listing_id, message.id)
            logger.warning(
                "Message to listing %s failed: %s",
                message.listing_id,
                redact_text(str(result.error)),
            )
        return result

    def _reconcile(self, listing_id: int, local_id: int, confirmed: Message) -> None:
        bucket = self._messages.setdefault(listing_id, [])
        already_present = any(entry.id == confirmed.id for entry in bucket)
        for index, entry in enumerate(bucket):
            if entry.id == local_id:
                if already_present:
                    del bucket[index]
                else:
                    bucket[index] = confirmed
                return
        if not already_present:
            bucket.append(confirmed)

    def _mark_failed(self, listing_id: int, local_id: int) -> None:
        bucket = self._messages.get(listing_id, [])
        for index, entry in enumerate(bucket):
            if entry.id == local_id:
                bucket[index] = dataclasses.replace(entry, failed=True)
                return

    async def wait_idle(self) -> None:
        """Wait until every outstanding delivery has settled."""

        while self._deliveries:
            await asyncio.gather(*list(self._deliveries.values()), return_exceptions=True)

    async def fetch_messages(self, listing_id: int) -> GatewayResult[List[Message]]:
        user_id = self._session.user_id
        result = await gateway_client.fetch_messages(
            self._http, self._base_url, listing_id, headers=self._session.authorization_header()
        )
        if self._session.user_id != user_id:
            logger.info("Dropping messages fetched for listing %s after a user change", listing_id)
            return result
        if not result.ok:
            self.last_error = result.error
            return result

        fetched = result.unwrap()
        if not fetched:
            return result
        bucket = self._messages.get(listing_id, [])
        confirmed_ids = [entry.id for entry in bucket if not entry.is_local]
        if confirmed_ids != [entry.id for entry in fetched]:
            local_entries = [entry for entry in bucket if entry.is_local]
            self._messages[listing_id] = list(fetched) + local_entries
        return result

    # -- conversations -----------------------------------------------------

    async def refresh_conversations(self) -> GatewayResult[list]:
        user_id = self._require_user()
        result = await gateway_client.fetch_conversations(
            self._http, self._base_url, user_id, headers=self._session.authorization_header()
        )
        if not result.ok:
            self.last_error = result.error
            return result
        if self._session.user_id != user_id:
            return result

        for remote in result.unwrap():
            self._conversation_listings[remote.listing_id] = remote.listing
            bucket = self._messages.setdefault(remote.listing_id, [])
            known = {entry.id for entry in bucket}
            for message in remote.messages:
                if message.id not in known:
                    bucket.append(message)
                    known.add(message.id)
        return result

    def conversations(self) -> List[Conversation]:
        listings_by_id: Dict[int, Listing] = dict(self._conversation_listings)
        for listing in self._listings:
            if listing.id is not None:
                listings_by_id[listing.id] = listing
        return derive_conversations(self._messages, listings_by_id, self._session.user_id)

    def is_unread(self, conversation: Conversation) -> bool:
        return self._read_state.is_unread(conversation, self._session.user_id)

    def unread_conversations(self) -> List[Conversation]:
        return [conversation for conversation in self.conversations() if self.is_unread(conversation)]

    def unread_count(self) -> int:
        return len(self.unread_conversations())

    def mark_conversation_read(self, conversation_id: str) -> None:
        self._read_state.mark_read(conversation_id)
