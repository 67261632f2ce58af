import unittest
from decimal import Decimal

from aiohttp.test_utils import TestServer, unused_port

from campus_market import gateway_client
from campus_market.errors import DecodeError, HTTPError, NetworkError, user_message
from campus_market.models import ListingDraft
from tests.helpers.fake_backend import FakeMarketplace


class GatewayClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.backend = FakeMarketplace()
        self.seller = self.backend.add_user("seller@utdallas.edu", "pw", name="Sam")
        self.buyer = self.backend.add_user("buyer@utdallas.edu", "pw", name="Bo")
        self.auth = {"Authorization": f"Bearer {self.backend.token_for(self.seller['id'])}"}
        self.server = TestServer(self.backend.create_app())
        await self.server.start_server()
        self.base_url = f"http://{self.server.host}:{self.server.port}"
        self.http = gateway_client.create_http_session(timeout_s=5)

    async def asyncTearDown(self):
        await self.http.close()
        await self.server.close()

    async def test_sign_in_decodes_token_and_user(self):
        result = await gateway_client.sign_in(self.http, self.base_url, "seller@utdallas.edu", "pw")

        self.assertTrue(result.ok)
        response = result.unwrap()
        self.assertEqual(response.token, "tok-1")
        self.assertEqual(response.user.id, self.seller["id"])
        self.assertEqual(response.user.display_name, "Sam")
        self.assertEqual(self.backend.requests[-1], ("POST", "/auth/login", None))

    async def test_sign_in_failure_carries_server_message(self):
        result = await gateway_client.sign_in(self.http, self.base_url, "seller@utdallas.edu", "wrong")

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, HTTPError)
        self.assertEqual(result.error.status, 401)
        self.assertEqual(user_message(result.error, "Login failed"), "Invalid email or password")
        with self.assertRaises(HTTPError):
            result.unwrap()

    async def test_sign_up_reports_created_message_and_duplicate_error(self):
        created = await gateway_client.sign_up(self.http, self.base_url, "new@utdallas.edu", "pw", "New")
        duplicate = await gateway_client.sign_up(self.http, self.base_url, "new@utdallas.edu", "pw", "New")

        self.assertTrue(created.ok)
        self.assertIn("verify", created.value)
        self.assertEqual(duplicate.error.server_message, "User already exists")

    async def test_fetch_listings_embeds_owner_and_click_count(self):
        self.backend.add_listing(self.seller["id"], "Desk lamp", 12.5, location="JSOM")

        result = await gateway_client.fetch_listings(self.http, self.base_url)

        listing = result.unwrap()[0]
        self.assertEqual(listing.title, "Desk lamp")
        self.assertEqual(listing.price, Decimal("12.5"))
        self.assertEqual(listing.owner.email, "seller@utdallas.edu")
        self.assertEqual(listing.click_count, 0)

    async def test_shape_mismatch_is_a_decode_error(self):
        self.backend.malformed_listings = True

        result = await gateway_client.fetch_listings(self.http, self.base_url)

        self.assertIsInstance(result.error, DecodeError)

    async def test_unreachable_backend_is_a_network_error(self):
        base_url = f"http://127.0.0.1:{unused_port()}"

        result = await gateway_client.fetch_listings(self.http, base_url)

        self.assertIsInstance(result.error, NetworkError)

    async def test_create_listing_sends_multipart_with_images_and_credentials(self):
        draft = ListingDraft(
            title="Bike",
            price=Decimal("80.00"),
            description="Road bike",
            images=(b"\xff\xd8first", b"\xff\xd8second"),
        )

        result = await gateway_client.create_listing(self.http, self.base_url, draft, headers=self.auth)

        listing = result.unwrap()
        self.assertIsNotNone(listing.id)
        self.assertEqual(listing.image_urls, ("/uploads/image_0.jpg", "/uploads/image_1.jpg"))
        self.assertEqual(listing.owner_id, self.seller["id"])
        self.assertEqual(self.backend.requests[-1][2], self.auth["Authorization"])

    async def test_update_listing_never_sends_images(self):
        listing = self.backend.add_listing(self.seller["id"], "Bike", 80)

        result = await gateway_client.update_listing(
            self.http,
            self.base_url,
            listing["id"],
            title="Bike (repriced)",
            price=Decimal("70"),
            location="Canyon Creek",
            headers=self.auth,
        )

        self.assertEqual(result.unwrap().price, Decimal("70"))
        self.assertEqual(set(self.backend.update_fields[-1]), {"title", "price", "location"})

    async def test_update_listing_of_someone_else_is_forbidden(self):
        listing = self.backend.add_listing(self.buyer["id"], "Chair", 5)

        result = await gateway_client.update_listing(
            self.http, self.base_url, listing["id"], title="Mine now", price=Decimal("1"), headers=self.auth
        )

        self.assertEqual(result.error.status, 403)
        self.assertEqual(result.error.server_message, "You can only edit your own listings")

    async def test_send_message_payload_uses_backend_keys(self):
        listing = self.backend.add_listing(self.buyer["id"], "Chair", 5)

        result = await gateway_client.send_message(
            self.http,
            self.base_url,
            content="is this available?",
            user_id=self.seller["id"],
            listing_id=listing["id"],
            headers=self.auth,
        )

        self.assertEqual(
            self.backend.sent_payloads,
            [{"content": "is this available?", "userId": self.seller["id"], "listingId": listing["id"]}],
        )
        message = result.unwrap()
        self.assertGreater(message.id, 0)
        self.assertEqual(message.sender.email, "seller@utdallas.edu")

    async def test_delete_and_click_endpoints(self):
        listing = self.backend.add_listing(self.buyer["id"], "Chair", 5)

        click = await gateway_client.record_listing_click(self.http, self.base_url, listing["id"], headers=self.auth)
        forbidden = await gateway_client.delete_listing(self.http, self.base_url, listing["id"], headers=self.auth)

        self.assertEqual(click.value, 1)
        self.assertEqual(forbidden.error.status, 403)

    async def test_push_token_and_profile_endpoints(self):
        registered = await gateway_client.register_push_token(
            self.http, self.base_url, self.seller["id"], "fcm-abc", headers=self.auth
        )
        updated = await gateway_client.update_profile(
            self.http,
            self.base_url,
            self.seller["id"],
            email="seller@utdallas.edu",
            name="Samantha",
            bio="Selling dorm stuff",
            image=b"\xff\xd8avatar",
        )
        fetched = await gateway_client.fetch_user(self.http, self.base_url, self.seller["id"], headers=self.auth)

        self.assertTrue(registered.ok)
        self.assertEqual(self.backend.push_tokens[self.seller["id"]], "fcm-abc")
        self.assertEqual(updated.unwrap().display_name, "Samantha")
        self.assertEqual(fetched.unwrap().bio, "Selling dorm stuff")
        self.assertEqual(fetched.unwrap().image_url, "/uploads/profile.jpg")


if __name__ == "__main__":
    unittest.main()
