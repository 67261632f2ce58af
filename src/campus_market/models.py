"""Marketplace entities decoded from the backend's JSON payloads."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"expected string, got {type(value).__name__}")
    return value


def _require_int(value: Any, name: str) -> int:
    # bool is an int subclass; the backend never sends one for an id
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    return value


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    return _require_int(value, name)


def parse_timestamp(value: Any) -> datetime:
    """Parse the backend's ISO-8601 timestamps (``...T12:00:00.000Z``) as UTC."""

    if not isinstance(value, str) or not value:
        raise ValueError("timestamp must be a non-empty string")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    rendered = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def parse_price(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError("price is required")
    try:
        price = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid price: {value!r}") from exc
    if not price.is_finite() or price < 0:
        raise ValueError(f"price must be a non-negative number: {value!r}")
    return price


@dataclass(frozen=True)
class UserSummary:
    id: int
    email: str
    display_name: Optional[str] = None
    image_url: Optional[str] = None
    bio: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "UserSummary":
        if not isinstance(payload, dict):
            raise TypeError("user payload must be a JSON object")
        email = payload["email"]
        if not isinstance(email, str):
            raise TypeError("email must be a string")
        return cls(
            id=_require_int(payload["id"], "user id"),
            email=email,
            display_name=_optional_str(payload.get("name")),
            image_url=_optional_str(payload.get("imageUrl")),
            bio=_optional_str(payload.get("bio")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.display_name,
            "imageUrl": self.image_url,
            "bio": self.bio,
        }

    @property
    def label(self) -> str:
        return self.display_name or self.email


@dataclass(frozen=True)
class Listing:
    title: str
    price: Decimal
    id: Optional[int] = None
    description: Optional[str] = None
    location: Optional[str] = None
    image_urls: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    owner_id: Optional[int] = None
    owner: Optional[UserSummary] = None
    click_count: Optional[int] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "Listing":
        if not isinstance(payload, dict):
            raise TypeError("listing payload must be a JSON object")
        title = payload["title"]
        if not isinstance(title, str):
            raise TypeError("title must be a string")
        image_urls = payload.get("imageUrls") or []
        if not isinstance(image_urls, list) or not all(isinstance(url, str) for url in image_urls):
            raise TypeError("imageUrls must be a list of strings")
        created_at = payload.get("createdAt")
        owner = payload.get("user")
        return cls(
            id=_optional_int(payload.get("id"), "listing id"),
            title=title,
            price=parse_price(payload.get("price")),
            description=_optional_str(payload.get("description")),
            location=_optional_str(payload.get("location")),
            image_urls=tuple(image_urls),
            created_at=parse_timestamp(created_at) if created_at is not None else None,
            owner_id=_optional_int(payload.get("userId"), "owner id"),
            owner=UserSummary.from_json(owner) if owner is not None else None,
            click_count=_optional_int(payload.get("clickCount"), "click count"),
        )

    @property
    def primary_image_url(self) -> Optional[str]:
        return self.image_urls[0] if self.image_urls else None

    @property
    def seller_id(self) -> Optional[int]:
        if self.owner_id is not None:
            return self.owner_id
        return self.owner.id if self.owner is not None else None


@dataclass(frozen=True)
class ListingDraft:
    """Editable fields of a listing that has not been submitted yet."""

    title: str
    price: Decimal
    description: Optional[str] = None
    location: Optional[str] = None
    images: Tuple[bytes, ...] = ()


class MessageKind(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    id: int
    created_at: datetime
    sender_id: int
    listing_id: int
    content: Optional[str] = None
    image_url: Optional[str] = None
    kind: MessageKind = MessageKind.TEXT
    sender: Optional[UserSummary] = None
    failed: bool = False

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "Message":
        if not isinstance(payload, dict):
            raise TypeError("message payload must be a JSON object")
        sender = payload.get("user")
        return cls(
            id=_require_int(payload["id"], "message id"),
            content=_optional_str(payload.get("content")),
            image_url=_optional_str(payload.get("imageUrl")),
            kind=MessageKind(payload.get("messageType") or MessageKind.TEXT.value),
            created_at=parse_timestamp(payload["createdAt"]),
            sender_id=_require_int(payload["userId"], "sender id"),
            listing_id=_require_int(payload["listingId"], "listing id"),
            sender=UserSummary.from_json(sender) if sender is not None else None,
        )

    @property
    def is_local(self) -> bool:
        """Locally composed entries carry negative ids until the server confirms them."""

        return self.id < 0

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.created_at, self.id)


@dataclass(frozen=True)
class Conversation:
    id: str
    listing_id: int
    listing: Listing
    counterpart: UserSummary
    last_message: Message
    messages: Tuple[Message, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RemoteConversation:
    """A conversation as returned by ``GET /users/{id}/conversations``."""

    id: str
    listing_id: int
    listing: Listing
    counterpart: UserSummary
    messages: Tuple[Message, ...]

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "RemoteConversation":
        if not isinstance(payload, dict):
            raise TypeError("conversation payload must be a JSON object")
        messages = payload.get("messages") or []
        if not isinstance(messages, list):
            raise TypeError("messages must be a list")
        decoded = [Message.from_json(item) for item in messages]
        last_message = payload.get("lastMessage")
        if last_message is not None:
            latest = Message.from_json(last_message)
            if all(item.id != latest.id for item in decoded):
                decoded.append(latest)
        return cls(
            id=str(payload["id"]),
            listing_id=_require_int(payload["listingId"], "listing id"),
            listing=Listing.from_json(payload["listing"]),
            counterpart=UserSummary.from_json(payload["otherUser"]),
            messages=tuple(decoded),
        )


@dataclass(frozen=True)
class Session:
    credential: Optional[str] = None
    user_id: Optional[int] = None
    profile: Optional[UserSummary] = None

    @property
    def is_authenticated(self) -> bool:
        return self.credential is not None and self.user_id is not None


@dataclass(frozen=True)
class SignInResponse:
    token: str
    user: UserSummary
    message: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "SignInResponse":
        if not isinstance(payload, dict):
            raise TypeError("login payload must be a JSON object")
        token = payload["token"]
        if not isinstance(token, str) or not token:
            raise ValueError("token must be a non-empty string")
        return cls(
            token=token,
            user=UserSummary.from_json(payload["user"]),
            message=_optional_str(payload.get("message")),
        )
