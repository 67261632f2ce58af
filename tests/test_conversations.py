import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from campus_market.conversations import derive_conversations, sort_messages
from campus_market.models import Listing, Message, UserSummary

ME = 7
SELLER = UserSummary(id=3, email="seller@utdallas.edu", display_name="Sam")
BUYER = UserSummary(id=9, email="buyer@utdallas.edu", display_name="Bo")
ME_SUMMARY = UserSummary(id=ME, email="me@utdallas.edu")
T0 = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)


def _message(message_id, sender, listing_id, seconds, content=None):
    return Message(
        id=message_id,
        content=content or f"m{message_id}",
        created_at=T0 + timedelta(seconds=seconds),
        sender_id=sender.id,
        listing_id=listing_id,
        sender=sender,
    )


SELLER_LISTING = Listing(id=11, title="Desk lamp", price=Decimal("12"), owner_id=SELLER.id, owner=SELLER)
MY_LISTING = Listing(id=12, title="Bike", price=Decimal("80"), owner_id=ME, owner=ME_SUMMARY)


class TestConversationDerivation(unittest.TestCase):
    def test_messages_sorted_by_time_then_id(self):
        late = _message(4, SELLER, 11, 10)
        tie_high = _message(3, SELLER, 11, 5)
        tie_low = _message(2, SELLER, 11, 5)
        early = _message(9, SELLER, 11, 1)

        self.assertEqual([m.id for m in sort_messages([late, tie_high, early, tie_low])], [9, 2, 3, 4])

    def test_buyer_side_conversation_with_seller(self):
        messages = {
            11: [
                _message(1, ME_SUMMARY, 11, 1),
                _message(2, SELLER, 11, 2),
            ]
        }

        conversations = derive_conversations(messages, {11: SELLER_LISTING}, ME)

        self.assertEqual(len(conversations), 1)
        conversation = conversations[0]
        self.assertEqual(conversation.id, "11")
        self.assertEqual(conversation.counterpart, SELLER)
        self.assertEqual(conversation.last_message.id, 2)
        self.assertEqual([m.id for m in conversation.messages], [1, 2])

    def test_seller_side_splits_by_buyer_and_shares_own_replies(self):
        messages = {
            12: [
                _message(1, SELLER, 12, 1),
                _message(2, BUYER, 12, 2),
                _message(3, ME_SUMMARY, 12, 3),
            ]
        }

        conversations = derive_conversations(messages, {12: MY_LISTING}, ME)

        self.assertEqual({c.counterpart.id for c in conversations}, {SELLER.id, BUYER.id})
        for conversation in conversations:
            self.assertEqual(conversation.last_message.id, 3)
            self.assertIn(3, [m.id for m in conversation.messages])

    def test_most_recent_activity_first(self):
        other_listing = Listing(id=13, title="Chair", price=Decimal("5"), owner_id=SELLER.id, owner=SELLER)
        messages = {
            11: [_message(1, SELLER, 11, 1)],
            13: [_message(2, SELLER, 13, 50)],
        }

        conversations = derive_conversations(messages, {11: SELLER_LISTING, 13: other_listing}, ME)

        self.assertEqual([c.listing_id for c in conversations], [13, 11])

    def test_unknown_listing_is_skipped(self):
        messages = {99: [_message(1, SELLER, 99, 1)], 11: [_message(2, SELLER, 11, 2)]}

        conversations = derive_conversations(messages, {11: SELLER_LISTING}, ME)

        self.assertEqual([c.listing_id for c in conversations], [11])

    def test_missing_sender_details_use_listing_owner(self):
        bare = Message(id=5, content="hi", created_at=T0, sender_id=SELLER.id, listing_id=11)

        conversations = derive_conversations({11: [bare]}, {11: SELLER_LISTING}, ME)

        self.assertEqual(conversations[0].counterpart, SELLER)

    def test_signed_out_has_no_conversations(self):
        self.assertEqual(derive_conversations({11: [_message(1, SELLER, 11, 1)]}, {11: SELLER_LISTING}, None), [])


if __name__ == "__main__":
    unittest.main()
