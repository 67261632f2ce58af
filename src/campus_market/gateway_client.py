"""Stateless aiohttp calls against the marketplace backend.

Every function takes the caller's ``aiohttp.ClientSession`` and base URL,
attaches whatever authorization headers the caller passes, and returns a
:class:`GatewayResult`. Expected failures (connectivity, non-2xx responses,
unexpected payloads) come back as classified errors instead of exceptions.
No retries and no caching happen here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from campus_market.errors import DecodeError, GatewayResult, HTTPError, NetworkError
from campus_market.models import (
    Listing,
    ListingDraft,
    Message,
    RemoteConversation,
    SignInResponse,
    UserSummary,
)
from campus_market.redact import redact_mapping, redact_text

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 15.0

Decoder = Callable[[Any], Any]


def create_http_session(timeout_s: float = DEFAULT_TIMEOUT_S) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_s))


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _server_message(raw: bytes) -> Optional[str]:
    try:
        payload = json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, ValueError):
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return None


def _decode_list(item_decoder: Decoder) -> Decoder:
    def _decode(payload: Any) -> List[Any]:
        if not isinstance(payload, list):
            raise TypeError("expected a JSON array")
        return [item_decoder(item) for item in payload]

    return _decode


def _ignore_body(_: Any) -> None:
    return None


async def _request(
    http: aiohttp.ClientSession,
    method: str,
    url: str,
    decode: Decoder,
    *,
    json_body: Optional[Dict[str, Any]] = None,
    form: Optional[aiohttp.FormData] = None,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[Any]:
    request_headers: Dict[str, str] = {"Accept": "application/json"}
    if headers:
        request_headers.update(headers)
    logger.debug("%s %s body=%s", method, url, redact_mapping(json_body) if json_body else None)
    try:
        async with http.request(method, url, json=json_body, data=form, headers=request_headers) as response:
            status = response.status
            raw = await response.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        error = NetworkError(str(exc) or type(exc).__name__)
        logger.warning("%s %s failed: %s", method, url, redact_text(str(error)))
        return GatewayResult.failure(error)

    if not 200 <= status < 300:
        http_error = HTTPError(status, _server_message(raw))
        logger.warning("%s %s returned %s", method, url, redact_text(str(http_error)))
        return GatewayResult.failure(http_error)

    try:
        payload = json.loads(raw.decode("utf-8")) if raw.strip() else None
        value = decode(payload)
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
        decode_error = DecodeError(f"unexpected response from {method} {url}: {exc}")
        logger.warning("%s", decode_error)
        return GatewayResult.failure(decode_error)
    return GatewayResult.success(value)


def _form(fields: Dict[str, Optional[str]]) -> aiohttp.FormData:
    form = aiohttp.FormData()
    for name, value in fields.items():
        if value is not None:
            form.add_field(name, value)
    return form


def _price_field(price: Decimal) -> str:
    return format(price, "f")


async def sign_up(
    http: aiohttp.ClientSession, base_url: str, email: str, password: str, name: str
) -> GatewayResult[Optional[str]]:
    def _decode(payload: Any) -> Optional[str]:
        if isinstance(payload, dict) and isinstance(payload.get("message"), str):
            return payload["message"]
        return None

    return await _request(
        http,
        "POST",
        _build_url(base_url, "/auth/signup"),
        _decode,
        json_body={"email": email, "password": password, "name": name},
    )


async def sign_in(
    http: aiohttp.ClientSession, base_url: str, email: str, password: str
) -> GatewayResult[SignInResponse]:
    return await _request(
        http,
        "POST",
        _build_url(base_url, "/auth/login"),
        SignInResponse.from_json,
        json_body={"email": email, "password": password},
    )


async def forgot_password(http: aiohttp.ClientSession, base_url: str, email: str) -> GatewayResult[str]:
    def _decode(payload: Any) -> str:
        message = payload.get("message") if isinstance(payload, dict) else None
        return message if isinstance(message, str) else ""

    return await _request(
        http,
        "POST",
        _build_url(base_url, "/auth/forgot-password"),
        _decode,
        json_body={"email": email},
    )


async def fetch_listings(
    http: aiohttp.ClientSession, base_url: str, headers: Optional[Dict[str, str]] = None
) -> GatewayResult[List[Listing]]:
    return await _request(
        http,
        "GET",
        _build_url(base_url, "/listings"),
        _decode_list(Listing.from_json),
        headers=headers,
    )


async def create_listing(
    http: aiohttp.ClientSession,
    base_url: str,
    draft: ListingDraft,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[Listing]:
    form = _form(
        {
            "title": draft.title,
            "price": _price_field(draft.price),
            "description": draft.description,
            "location": draft.location,
        }
    )
    for index, image in enumerate(draft.images):
        form.add_field("images", image, filename=f"image_{index}.jpg", content_type="image/jpeg")
    return await _request(
        http,
        "POST",
        _build_url(base_url, "/listings"),
        Listing.from_json,
        form=form,
        headers=headers,
    )


async def update_listing(
    http: aiohttp.ClientSession,
    base_url: str,
    listing_id: int,
    *,
    title: str,
    price: Decimal,
    description: Optional[str] = None,
    location: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[Listing]:
    form = _form(
        {
            "title": title,
            "price": _price_field(price),
            "description": description,
            "location": location,
        }
    )
    return await _request(
        http,
        "PUT",
        _build_url(base_url, f"/listings/{listing_id}"),
        Listing.from_json,
        form=form,
        headers=headers,
    )


async def delete_listing(
    http: aiohttp.ClientSession,
    base_url: str,
    listing_id: int,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[None]:
    return await _request(
        http,
        "DELETE",
        _build_url(base_url, f"/listings/{listing_id}"),
        _ignore_body,
        headers=headers,
    )


async def fetch_messages(
    http: aiohttp.ClientSession,
    base_url: str,
    listing_id: int,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[List[Message]]:
    return await _request(
        http,
        "GET",
        _build_url(base_url, f"/listings/{listing_id}/messages"),
        _decode_list(Message.from_json),
        headers=headers,
    )


async def send_message(
    http: aiohttp.ClientSession,
    base_url: str,
    *,
    content: str,
    user_id: int,
    listing_id: int,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[Message]:
    return await _request(
        http,
        "POST",
        _build_url(base_url, "/messages"),
        Message.from_json,
        json_body={"content": content, "userId": user_id, "listingId": listing_id},
        headers=headers,
    )


async def fetch_conversations(
    http: aiohttp.ClientSession,
    base_url: str,
    user_id: int,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[List[RemoteConversation]]:
    return await _request(
        http,
        "GET",
        _build_url(base_url, f"/users/{user_id}/conversations"),
        _decode_list(RemoteConversation.from_json),
        headers=headers,
    )


async def fetch_user(
    http: aiohttp.ClientSession,
    base_url: str,
    user_id: int,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[UserSummary]:
    return await _request(
        http,
        "GET",
        _build_url(base_url, f"/users/{user_id}"),
        UserSummary.from_json,
        headers=headers,
    )


async def update_profile(
    http: aiohttp.ClientSession,
    base_url: str,
    user_id: int,
    *,
    email: str,
    name: Optional[str] = None,
    bio: Optional[str] = None,
    image: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[UserSummary]:
    form = _form({"email": email, "name": name, "bio": bio})
    if image is not None:
        form.add_field("image", image, filename="profile.jpg", content_type="image/jpeg")
    return await _request(
        http,
        "PUT",
        _build_url(base_url, f"/users/{user_id}"),
        UserSummary.from_json,
        form=form,
        headers=headers,
    )


async def register_push_token(
    http: aiohttp.ClientSession,
    base_url: str,
    user_id: int,
    token: str,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[None]:
    return await _request(
        http,
        "POST",
        _build_url(base_url, f"/users/{user_id}/fcm-token"),
        _ignore_body,
        json_body={"fcmToken": token},
        headers=headers,
    )


async def record_listing_click(
    http: aiohttp.ClientSession,
    base_url: str,
    listing_id: int,
    headers: Optional[Dict[str, str]] = None,
) -> GatewayResult[Optional[int]]:
    def _decode(payload: Any) -> Optional[int]:
        count = payload.get("clickCount") if isinstance(payload, dict) else None
        if isinstance(count, int) and not isinstance(count, bool):
            return count
        return None

    return await _request(
        http,
        "POST",
        _build_url(base_url, f"/listings/{listing_id}/click"),
        _decode,
        headers=headers,
    )
