"""Tests for the downlink sampler."""

import unittest

from fakes import FakeClock, FakeSession, Recorder

from ndt7.download import DownloadSampler
from ndt7.errors import TransportError
from ndt7.session import Frame


def _client_samples(posted):
    return [m.measurement for m in posted if m.measurement is not None]


class TestDownloadSamplerFrames(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.posted = Recorder()
        self.sampler = DownloadSampler(None, self.posted, clock=self.clock)
        self.sampler.begin()

    def test_start_posted_first(self):
        self.assertEqual(self.posted[0].kind, "start")
        self.assertEqual(self.posted[0].start_time, 100.0)

    def test_five_frames_within_100ms(self):
        for _ in range(5):
            self.clock.advance(0.02)
            self.sampler.on_frame(Frame(b"\x00" * 1000))
        self.assertEqual(self.sampler.bytes_received_total, 5000)
        self.assertLessEqual(len(_client_samples(self.posted)), 1)

    def test_text_frame_counts_encoded_length_and_is_forwarded(self):
        text = '{"city":"Zürich"}'
        self.sampler.on_frame(Frame(text))
        self.assertEqual(self.sampler.bytes_received_total, len(text.encode("utf-8")))
        self.assertEqual(self.posted[-1].server_message, text)

    def test_server_frames_never_rate_limited(self):
        for _ in range(10):
            self.sampler.on_frame(Frame("{}"))
        forwarded = [m for m in self.posted if m.server_message is not None]
        self.assertEqual(len(forwarded), 10)

    def test_sample_cadence(self):
        for offset in (0.1, 0.2, 0.1, 0.1, 0.3):
            self.clock.advance(offset)
            self.sampler.on_frame(Frame(b"x" * 10))
        samples = _client_samples(self.posted)
        # frames at 0.1, 0.3, 0.4, 0.5, 0.8: samples only at 0.3 and 0.8
        self.assertEqual(len(samples), 2)
        self.assertAlmostEqual(samples[0].elapsed_seconds, 0.3)
        self.assertEqual(samples[0].num_bytes, 20)
        for prev, cur in zip(samples, samples[1:]):
            self.assertGreaterEqual(cur.elapsed_seconds - prev.elapsed_seconds, 0.25)

    def test_sample_reports_running_total(self):
        self.clock.advance(0.3)
        self.sampler.on_frame(Frame(b"x" * 125_000))
        sample = _client_samples(self.posted)[0]
        self.assertEqual(sample.num_bytes, 125_000)
        self.assertAlmostEqual(sample.mean_mbps, 125_000 * 8 / 1e6 / 0.3)

    def test_total_is_sum_of_sizes(self):
        frames = [b"a" * 7, "{}", b"b" * 100, '{"x": 1}', b""]
        for f in frames:
            self.clock.advance(0.13)
            self.sampler.on_frame(Frame(f))
        expected = sum(len(f.encode()) if isinstance(f, str) else len(f) for f in frames)
        self.assertEqual(self.sampler.bytes_received_total, expected)


class TestDownloadSamplerRun(unittest.IsolatedAsyncioTestCase):
    async def test_ends_on_close(self):
        session = FakeSession([b"x" * 10, "{}", None])
        posted = Recorder()
        sampler = DownloadSampler(session, posted, clock=FakeClock(step=0.1))
        await sampler.run()
        self.assertEqual(sampler.bytes_received_total, 12)
        self.assertEqual(posted[0].kind, "start")

    async def test_error_propagates(self):
        session = FakeSession([b"x", TransportError("reset")])
        sampler = DownloadSampler(session, Recorder(), clock=FakeClock())
        with self.assertRaises(TransportError):
            await sampler.run()
        self.assertEqual(sampler.bytes_received_total, 1)


if __name__ == "__main__":
    unittest.main()
