"""Tests for the adaptive uplink pacer."""

import unittest

from fakes import FakeClock, FakeSession, Recorder

from ndt7.constants import INITIAL_MESSAGE_SIZE, MAX_MESSAGE_SIZE
from ndt7.errors import TransportError
from ndt7.upload import UploadPacer


def _client_samples(posted):
    return [m.measurement for m in posted if m.measurement is not None]


class ClosingSession(FakeSession):
    """Server closes cleanly after ``close_after`` messages were accepted."""

    def __init__(self, close_after, send_error=False, **kwargs):
        super().__init__(**kwargs)
        self.close_after = close_after
        self.send_error = send_error

    async def send(self, payload):
        if len(self.sent) >= self.close_after and self.send_error:
            # the close is seen while the send is in flight
            self.state = "closed"
            self.feed(None)
            raise TransportError("send failed: connection closed")
        await super().send(payload)
        if len(self.sent) == self.close_after and not self.send_error:
            self.state = "closed"
            self.feed(None)


class TestGrowthRule(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = FakeSession(buffered=0)
        self.pacer = UploadPacer(self.session, Recorder(), clock=FakeClock())

    async def test_starts_at_8k(self):
        self.assertEqual(self.pacer.message_size, INITIAL_MESSAGE_SIZE)

    async def test_grows_after_16_confirmed_messages(self):
        self.pacer.bytes_sent_total = 16 * INITIAL_MESSAGE_SIZE
        self.assertTrue(self.pacer.maybe_grow())
        self.assertEqual(self.pacer.message_size, 2 * INITIAL_MESSAGE_SIZE)

    async def test_no_growth_below_threshold(self):
        self.pacer.bytes_sent_total = 16 * INITIAL_MESSAGE_SIZE - 1
        self.assertFalse(self.pacer.maybe_grow())
        self.assertEqual(self.pacer.message_size, INITIAL_MESSAGE_SIZE)

    async def test_buffered_bytes_do_not_count(self):
        self.pacer.bytes_sent_total = 16 * INITIAL_MESSAGE_SIZE
        self.session.buffered = INITIAL_MESSAGE_SIZE
        self.assertFalse(self.pacer.maybe_grow())

    async def test_capped_at_max(self):
        self.pacer.message_size = MAX_MESSAGE_SIZE
        self.pacer.bytes_sent_total = 1 << 40
        self.assertFalse(self.pacer.maybe_grow())
        self.assertEqual(self.pacer.message_size, MAX_MESSAGE_SIZE)


class TestFillRule(unittest.IsolatedAsyncioTestCase):
    async def test_fill_is_bounded(self):
        session = FakeSession(buffered=0)
        session.state = "open"
        pacer = UploadPacer(session, Recorder(), clock=FakeClock())
        sent = await pacer.fill()
        self.assertEqual(sent, 7)
        self.assertEqual(session.sent, [INITIAL_MESSAGE_SIZE] * 7)
        self.assertEqual(pacer.bytes_sent_total, 7 * INITIAL_MESSAGE_SIZE)

    async def test_fill_stops_at_lookahead(self):
        session = FakeSession(buffered=0, drain_per_query=0)
        session.state = "open"
        pacer = UploadPacer(session, Recorder(), clock=FakeClock())
        await pacer.fill()
        await pacer.fill()
        self.assertEqual(len(session.sent), 7)
        self.assertEqual(session.buffered, 7 * INITIAL_MESSAGE_SIZE)

    async def test_nothing_sent_when_buffer_full(self):
        session = FakeSession(buffered=7 * INITIAL_MESSAGE_SIZE)
        session.state = "open"
        pacer = UploadPacer(session, Recorder(), clock=FakeClock())
        self.assertEqual(await pacer.fill(), 0)

    async def test_fill_stops_when_session_not_open(self):
        session = FakeSession()
        session.state = "closed"
        pacer = UploadPacer(session, Recorder(), clock=FakeClock())
        self.assertEqual(await pacer.fill(), 0)
        self.assertEqual(session.sent, [])

    async def test_fill_stops_when_server_closes_mid_loop(self):
        session = ClosingSession(close_after=3)
        await session.open()
        pacer = UploadPacer(session, Recorder(), clock=FakeClock())
        self.assertEqual(await pacer.fill(), 3)


class TestPacerRun(unittest.IsolatedAsyncioTestCase):
    async def test_never_draining_transport_stays_small(self):
        session = FakeSession(drain_per_query=0)
        await session.open()
        posted = Recorder()
        pacer = UploadPacer(session, posted, clock=FakeClock(step=0.01), duration=1.0)
        await pacer.run()

        self.assertEqual(pacer.message_size, INITIAL_MESSAGE_SIZE)
        self.assertEqual(session.sent, [INITIAL_MESSAGE_SIZE] * 7)
        self.assertEqual(session.state, "closed")
        self.assertTrue(all(m.num_bytes == 0 for m in _client_samples(posted)))

    async def test_fast_link_grows_monotonically_to_cap(self):
        session = FakeSession(drain_per_query=1 << 40)
        await session.open()
        pacer = UploadPacer(session, Recorder(), clock=FakeClock(step=0.01), duration=1.0)
        await pacer.run()

        self.assertEqual(session.sent, sorted(session.sent))
        self.assertLessEqual(max(session.sent), MAX_MESSAGE_SIZE)
        self.assertEqual(pacer.message_size, MAX_MESSAGE_SIZE)

    async def test_confirmed_bytes_non_decreasing(self):
        session = FakeSession(drain_per_query=20_000)
        await session.open()
        posted = Recorder()
        pacer = UploadPacer(session, posted, clock=FakeClock(step=0.01), duration=2.0)
        await pacer.run()

        counts = [m.num_bytes for m in _client_samples(posted)]
        self.assertGreater(len(counts), 2)
        self.assertEqual(counts, sorted(counts))

    async def test_sample_spacing_and_final_measurement(self):
        session = FakeSession(drain_per_query=50_000)
        await session.open()
        posted = Recorder()
        pacer = UploadPacer(session, posted, clock=FakeClock(step=0.01), duration=1.5)
        await pacer.run()

        self.assertEqual(posted[0].kind, "start")
        self.assertAlmostEqual(posted[0].expected_end_time - posted[0].start_time, 1.5)
        samples = _client_samples(posted)
        # every sample but the closing one respects the 250 ms cadence
        for prev, cur in zip(samples[:-1], samples[1:-1]):
            self.assertGreaterEqual(cur.elapsed_seconds - prev.elapsed_seconds, 0.25 - 1e-9)
        self.assertGreaterEqual(samples[-1].elapsed_seconds, 1.5)

    async def test_server_frames_forwarded(self):
        session = FakeSession(['{"TCPInfo": {}}'], drain_per_query=0)
        await session.open()
        posted = Recorder()
        pacer = UploadPacer(session, posted, clock=FakeClock(step=0.01), duration=0.5)
        await pacer.run()
        self.assertIn('{"TCPInfo": {}}', [m.server_message for m in posted])

    async def test_connection_error_stops_pacer(self):
        session = FakeSession([TransportError("reset")], drain_per_query=0)
        await session.open()
        pacer = UploadPacer(session, Recorder(), clock=FakeClock(step=0.01), duration=10.0)
        with self.assertRaises(TransportError):
            await pacer.run()

    async def test_server_close_mid_fill_is_clean(self):
        session = ClosingSession(close_after=3, drain_per_query=0)
        await session.open()
        pacer = UploadPacer(session, Recorder(), clock=FakeClock(step=0.01), duration=10.0)
        await pacer.run()
        self.assertEqual(len(session.sent), 3)
        self.assertEqual(session.state, "closed")

    async def test_send_failing_after_server_close_is_clean(self):
        session = ClosingSession(close_after=2, send_error=True, drain_per_query=0)
        await session.open()
        pacer = UploadPacer(session, Recorder(), clock=FakeClock(step=0.01), duration=10.0)
        await pacer.run()
        self.assertEqual(len(session.sent), 2)

    async def test_final_measurement_posted_before_close(self):
        session = FakeSession(drain_per_query=0)
        await session.open()
        posted = Recorder()
        seen_at_close = []
        original_close = session.close

        async def close():
            seen_at_close.extend(_client_samples(posted))
            await original_close()

        session.close = close
        pacer = UploadPacer(session, posted, clock=FakeClock(step=0.01), duration=1.0)
        await pacer.run()

        self.assertTrue(seen_at_close)
        self.assertGreaterEqual(seen_at_close[-1].elapsed_seconds, 1.0)
        self.assertEqual(seen_at_close, _client_samples(posted))


if __name__ == "__main__":
    unittest.main()
