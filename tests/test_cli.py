import io
import shutil
import tempfile
import unittest
from pathlib import Path

from aiohttp.test_utils import TestServer

from campus_market.cli import build_parser, main, run
from campus_market.config import Settings
from tests.helpers.fake_backend import FakeMarketplace


def test_usage_error_exits_with_two(tmp_path: Path):
    assert main(["listings", "--sort", "cheapest"], output=io.StringIO(), settings=Settings(state_dir=tmp_path)) == 2


def test_whoami_without_session(tmp_path: Path):
    output = io.StringIO()

    assert main(["whoami"], output=output, settings=Settings(state_dir=tmp_path)) == 1
    assert output.getvalue() == "Not signed in.\n"


def test_logout_is_safe_without_session(tmp_path: Path):
    output = io.StringIO()

    assert main(["logout"], output=output, settings=Settings(state_dir=tmp_path)) == 0
    assert "Signed out." in output.getvalue()


class TestCommands(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.backend = FakeMarketplace()
        self.backend.add_user("seller@utdallas.edu", "pw", name="Sam", user_id=3)
        self.backend.add_user("buyer@utdallas.edu", "pw", name="Ada", user_id=7)
        self.listing = self.backend.add_listing(3, "Desk lamp", 12, location="Canyon Creek")
        self.backend.add_listing(7, "Bike", 80)

        self.server = TestServer(self.backend.create_app())
        await self.server.start_server()
        state_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, state_dir, True)
        self.settings = Settings(
            base_url=f"http://{self.server.host}:{self.server.port}",
            state_dir=Path(state_dir),
            http_timeout_s=5,
        )
        self.parser = build_parser()

    async def asyncTearDown(self):
        await self.server.close()

    async def _run(self, *argv):
        output = io.StringIO()
        code = await run(self.parser.parse_args(list(argv)), self.settings, output)
        return code, output.getvalue()

    async def test_commands_share_the_persisted_session(self):
        code, out = await self._run("login", "buyer@utdallas.edu", "--password", "pw")
        self.assertEqual((code, out), (0, "Login successful\n"))

        code, out = await self._run("whoami")
        self.assertEqual((code, out), (0, "user 7: Ada\n"))

        code, out = await self._run("listings", "--sort", "price_desc")
        self.assertEqual(code, 0)
        self.assertEqual([line.split(" - ")[0] for line in out.splitlines()], ["#2 Bike", "#1 Desk lamp"])
        self.assertIn("@ Canyon Creek (Sam)", out)

        code, out = await self._run("listings", "--mine")
        self.assertEqual(out.splitlines(), ["#2 Bike - $80 (Ada)"])

        code, out = await self._run("send", str(self.listing["id"]), "still available?")
        self.assertEqual((code, out), (0, "Sent.\n"))

        code, out = await self._run("messages", str(self.listing["id"]))
        self.assertEqual(code, 0)
        self.assertTrue(out.rstrip().endswith("me: still available?"))

        code, out = await self._run("conversations")
        self.assertEqual(code, 0)
        self.assertIn("[1] Desk lamp with Sam: still available?", out)

        code, out = await self._run("logout")
        code, out = await self._run("whoami")
        self.assertEqual(code, 1)

    async def test_unread_conversations_and_read_marker(self):
        self.backend.add_message(7, self.listing["id"], "hi")
        self.backend.add_message(3, self.listing["id"], "yes, still here")
        await self._run("login", "buyer@utdallas.edu", "--password", "pw")

        code, out = await self._run("conversations", "--unread")
        self.assertEqual(out, "* [1] Desk lamp with Sam: yes, still here\n")

        code, out = await self._run("read", "1")
        self.assertEqual((code, out), (0, "Marked 1 as read.\n"))

        code, out = await self._run("conversations", "--unread")
        self.assertEqual((code, out), (0, ""))

    async def test_failed_login_and_send_report_server_text(self):
        code, out = await self._run("login", "buyer@utdallas.edu", "--password", "nope")
        self.assertEqual((code, out), (1, "Invalid email or password\n"))

        await self._run("login", "buyer@utdallas.edu", "--password", "pw")
        self.backend.send_failure = (500, "Failed to send message")
        code, out = await self._run("send", str(self.listing["id"]), "hello")
        self.assertEqual((code, out), (1, "Failed to send message\n"))

    async def test_commands_needing_a_session_explain_how_to_sign_in(self):
        code, out = await self._run("conversations")

        self.assertEqual(code, 1)
        self.assertIn("Not signed in", out)


if __name__ == "__main__":
    unittest.main()
