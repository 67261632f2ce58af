"""Session and conversation sync engine for the campus marketplace client."""

from .errors import DecodeError, GatewayError, GatewayResult, HTTPError, NetworkError, NotAuthenticatedError
from .kv_store import JsonFileStore
from .listing_query import SortOrder, browse, filter_listings, sort_listings
from .models import Conversation, Listing, ListingDraft, Message, MessageKind, Session, UserSummary
from .read_state import ReadStateTracker
from .session_store import SessionStore
from .sync_engine import AuthOutcome, ListingsState, SyncEngine

__all__ = [
    "AuthOutcome",
    "Conversation",
    "DecodeError",
    "GatewayError",
    "GatewayResult",
    "HTTPError",
    "JsonFileStore",
    "Listing",
    "ListingDraft",
    "ListingsState",
    "Message",
    "MessageKind",
    "NetworkError",
    "NotAuthenticatedError",
    "ReadStateTracker",
    "Session",
    "SessionStore",
    "SortOrder",
    "SyncEngine",
    "UserSummary",
    "browse",
    "filter_listings",
    "sort_listings",
]
