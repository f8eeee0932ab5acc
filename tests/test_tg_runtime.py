import unittest
from unittest.mock import MagicMock, patch

from oddsgrid.sofascore_client.base import ClientError, ErrorKind
from oddsgrid.tg_runtime import SendWindow, TelegramClient, error_payload, get_telegram_config, notify_error, should_notify


class ShouldNotifyTests(unittest.TestCase):
    def test_filters_timeouts_and_blocks(self) -> None:
        self.assertFalse(should_notify(ClientError(ErrorKind.TIMEOUT, "slow")))
        self.assertFalse(should_notify(ClientError(ErrorKind.FORBIDDEN, "blocked")))
        self.assertFalse(should_notify(RuntimeError("connect ETIMEDOUT 1.2.3.4:443")))
        self.assertFalse(should_notify(RuntimeError("Request failed with status code 403")))
        self.assertTrue(should_notify(ClientError(ErrorKind.SERVER_ERROR, "HTTP 503")))
        self.assertTrue(should_notify(ValueError("boom")))


class ErrorPayloadTests(unittest.TestCase):
    def test_includes_public_attributes(self) -> None:
        try:
            raise ClientError(ErrorKind.FORBIDDEN, "blocked", url="https://x", status=403, pool_stats={"total": 3})
        except ClientError as e:
            payload = error_payload(e)
        self.assertEqual(payload["name"], "ClientError")
        self.assertEqual(payload["message"], "[forbidden] blocked")
        self.assertEqual(payload["kind"], "forbidden")
        self.assertEqual(payload["pool_stats"], {"total": 3})
        self.assertIn("Traceback", payload["stack"])

    def test_unserializable_attribute_is_repr(self) -> None:
        err = RuntimeError("x")
        err.obj = object()
        self.assertTrue(error_payload(err)["obj"].startswith("<object"))


class NotifyTests(unittest.TestCase):
    def test_unconfigured_is_noop(self) -> None:
        with patch.dict("os.environ", {"TELEGRAM_BOT_TOKEN": "", "TELEGRAM_CHAT_ID": ""}, clear=False):
            self.assertIsNone(get_telegram_config())
            self.assertFalse(notify_error({"message": "x"}))

    def test_delivery_result(self) -> None:
        client = MagicMock()
        client.send_text_result.return_value = {"ok": True, "result": {"message_id": 1}}
        self.assertTrue(notify_error({"message": "<b>"}, client=client))
        text = client.send_text_result.call_args.args[0]
        self.assertIn("&lt;b&gt;", text)

        client.send_text_result.return_value = {"ok": False, "description": "chat not found"}
        self.assertFalse(notify_error({"message": "x"}, client=client))

    def test_never_raises(self) -> None:
        client = MagicMock()
        client.send_text_result.side_effect = OSError("network down")
        self.assertFalse(notify_error({"message": "x"}, client=client))

    def test_plain_text_fallback(self) -> None:
        client = TelegramClient(token="t", chat_id="c")
        with patch.object(client, "_api", side_effect=[{"ok": False, "description": "bad html"}, {"ok": True}]) as api:
            self.assertEqual(client.send_text_result("<b>x"), {"ok": True})
        self.assertEqual(api.call_count, 2)
        self.assertNotIn("parse_mode", api.call_args_list[1].args[1])


class SendWindowTests(unittest.TestCase):
    def test_blocks_when_minute_is_full(self) -> None:
        now = [100.0]
        pauses = []

        def sleep(s):
            pauses.append(s)
            now[0] += s

        window = SendWindow(2, clock=lambda: now[0], sleep=sleep)
        window.wait()
        window.wait()
        self.assertEqual(pauses, [])
        window.wait()
        self.assertEqual(pauses, [5.0])

        now[0] += 60.0
        window.wait()
        self.assertEqual(len(pauses), 1)

    def test_disabled_limit(self) -> None:
        window = SendWindow(0, sleep=lambda s: self.fail("should not sleep"))
        for _ in range(50):
            window.wait()


if __name__ == "__main__":
    unittest.main()
