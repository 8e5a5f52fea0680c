import asyncio, time
import unittest as test
from unittest.mock import patch, Mock, AsyncMock

import requests

from dmpeditor.base.config import ConfigurationException
from dmpeditor.grdm import transport as tp
from dmpeditor.grdm.exceptions import RetriesExhausted
from dmpeditor.grdm.sim import make_response

url = "https://api.sim.rdm/v2/users/me/"

class ScriptedSession:
    """
    a session that plays back a list of outcomes: a status code to respond with, or an
    exception to raise
    """
    def __init__(self, outcomes, delay=0):
        self.outcomes = list(outcomes)
        self.calls = []
        self.delay = delay

    def request(self, method, url, **kw):
        self.calls.append((method, url, kw))
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return make_response(outcome, {"ok": outcome}, url)

    def close(self):
        pass

class TestResilientTransport(test.TestCase):

    def test_ctor(self):
        t = tp.ResilientTransport()
        self.assertEqual(t.retries, 5)
        self.assertEqual(t.timeout, 10.0)
        self.assertEqual(t.backoff, 1.0)
        self.assertIsNone(t.token())
        self.assertEqual(t.headers(), {})
        self.assertTrue(isinstance(t.session, requests.Session))

        with self.assertRaises(ValueError):
            tp.ResilientTransport(retries=0)

    def test_from_config(self):
        t = tp.ResilientTransport.from_config({"retries": "3", "timeout": 2, "backoff": 0.5}, "tok")
        self.assertEqual(t.retries, 3)
        self.assertEqual(t.timeout, 2.0)
        self.assertEqual(t.backoff, 0.5)
        self.assertEqual(t.headers(), {"Authorization": "Bearer tok"})

        with self.assertRaises(ConfigurationException):
            tp.ResilientTransport.from_config({"retries": 0})
        with self.assertRaises(ConfigurationException):
            tp.ResilientTransport.from_config({"timeout": "forever"})

    def test_token_source(self):
        tokens = iter(["t1", "t2"])
        t = tp.ResilientTransport(lambda: next(tokens))
        self.assertEqual(t.headers({"Accept": "application/json"}),
                         {"Authorization": "Bearer t1", "Accept": "application/json"})
        self.assertEqual(t.headers(), {"Authorization": "Bearer t2"})

    def test_success(self):
        sess = ScriptedSession([200])
        t = tp.ResilientTransport("tok", session=sess)
        resp = asyncio.run(t.execute("GET", url, params={"a": 1}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(sess.calls), 1)
        self.assertEqual(sess.calls[0][2]['params'], {"a": 1})
        self.assertEqual(sess.calls[0][2]['headers'], {"Authorization": "Bearer tok"})
        self.assertEqual(sess.calls[0][2]['timeout'], 10.0)

    def test_http_errors_not_retried(self):
        for status in (400, 401, 404, 500, 503):
            sess = ScriptedSession([status, 200])
            t = tp.ResilientTransport("tok", session=sess)
            resp = asyncio.run(t.execute("GET", url))
            self.assertEqual(resp.status_code, status)
            self.assertEqual(len(sess.calls), 1)

    @patch('asyncio.sleep', new_callable=AsyncMock)
    def test_rate_limit_then_success(self, sleep):
        for k in range(5):
            sleep.reset_mock()
            sess = ScriptedSession([429]*k + [200])
            t = tp.ResilientTransport("tok", retries=5, backoff=1.0, session=sess)
            resp = asyncio.run(t.execute("GET", url))
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(len(sess.calls), k+1)
            self.assertEqual(sleep.await_count, k)
            if k:
                sleep.assert_awaited_with(1.0)

    @patch('asyncio.sleep', new_callable=AsyncMock)
    def test_rate_limit_exhausted(self, sleep):
        sess = ScriptedSession([429]*5 + [200])
        t = tp.ResilientTransport("tok", retries=5, session=sess)
        with self.assertRaises(RetriesExhausted) as cm:
            asyncio.run(t.execute("GET", url))
        self.assertEqual(len(sess.calls), 5)
        self.assertEqual(sleep.await_count, 4)
        self.assertTrue(cm.exception.rate_limited)
        self.assertEqual(cm.exception.attempts, 5)
        self.assertIn("429", str(cm.exception))

    @patch('asyncio.sleep', new_callable=AsyncMock)
    def test_connection_errors(self, sleep):
        sess = ScriptedSession([requests.ConnectionError("refused"), 200])
        t = tp.ResilientTransport("tok", retries=3, session=sess)
        resp = asyncio.run(t.execute("GET", url))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(sleep.await_count, 1)

        sess = ScriptedSession([requests.ConnectionError("refused")])
        t = tp.ResilientTransport("tok", retries=3, session=sess)
        with self.assertRaises(RetriesExhausted) as cm:
            asyncio.run(t.execute("GET", url))
        self.assertEqual(len(sess.calls), 3)
        self.assertFalse(cm.exception.rate_limited)
        self.assertTrue(isinstance(cm.exception.cause, requests.ConnectionError))

    def test_unexpected_errors_propagate(self):
        sess = ScriptedSession([KeyError("bug")])
        t = tp.ResilientTransport("tok", retries=3, session=sess)
        with self.assertRaises(KeyError):
            asyncio.run(t.execute("GET", url))
        self.assertEqual(len(sess.calls), 1)

    def test_timeout(self):
        sess = ScriptedSession([200], delay=0.3)
        t = tp.ResilientTransport("tok", retries=2, timeout=0.05, backoff=0, session=sess)
        with self.assertRaises(RetriesExhausted) as cm:
            asyncio.run(t.execute("GET", url))
        self.assertEqual(len(sess.calls), 2)
        self.assertTrue(isinstance(cm.exception.cause, asyncio.TimeoutError))

    def test_queued_requests_not_timed_out(self):
        # 40 requests through 4 workers take about 0.5s in all; each is sent well
        # within the timeout once a worker picks it up
        sess = ScriptedSession([200], delay=0.05)
        t = tp.ResilientTransport("tok", retries=1, timeout=0.25, backoff=0, session=sess,
                                  max_workers=4)

        async def fanout():
            return await asyncio.gather(*[t.execute("GET", url) for i in range(40)],
                                        return_exceptions=True)

        try:
            results = asyncio.run(fanout())
        finally:
            t.close()
        failed = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(failed, [])
        self.assertEqual(len(sess.calls), 40)

    def test_cancel_queued_request(self):
        sess = ScriptedSession([200], delay=0.2)
        t = tp.ResilientTransport("tok", retries=1, timeout=5, session=sess, max_workers=1)

        async def cancel_second():
            first = asyncio.create_task(t.execute("GET", url))
            second = asyncio.create_task(t.execute("GET", url + "?second"))
            await asyncio.sleep(0.05)
            second.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await second
            return await first

        try:
            resp = asyncio.run(cancel_second())
        finally:
            t.close()
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([c[1] for c in sess.calls], [url])

    def test_max_workers(self):
        t = tp.ResilientTransport()
        self.assertEqual(t.max_workers, 8)
        t = tp.ResilientTransport.from_config({"max_workers": "3"})
        self.assertEqual(t.max_workers, 3)
        with self.assertRaises(ConfigurationException):
            tp.ResilientTransport.from_config({"max_workers": 0})
        with self.assertRaises(ValueError):
            tp.ResilientTransport(max_workers=0)

    def test_close(self):
        sess = Mock()
        sess.request.return_value = make_response(200, {}, url)
        t = tp.ResilientTransport("tok", session=sess)
        asyncio.run(t.execute("GET", url))
        t.close()
        sess.close.assert_called_once_with()

        # a closed transport starts a fresh pool when used again
        self.assertEqual(asyncio.run(t.execute("GET", url)).status_code, 200)
        t.close()

if __name__ == '__main__':
    test.main()
