import unittest
import threading
from pathlib import Path

# Adjust path to import the actual classes
import sys
src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from rtp_qos.sequence_tracker import SequenceTracker, loss_percent

SAMPLES_PER_PACKET = 160


def feed(tracker: SequenceTracker, sequences, start_ts: int = 1000, byte_len: int = 172):
    """Feed sequence numbers with a timestamp that advances every packet."""
    for i, seq in enumerate(sequences):
        tracker.observe(seq, start_ts + i * SAMPLES_PER_PACKET, byte_len)


class TestSessionAccounting(unittest.TestCase):
    def setUp(self):
        self.tracker = SequenceTracker()

    def test_contiguous_sequence_has_no_loss(self):
        feed(self.tracker, range(1, 101))
        session = self.tracker.snapshot_session()
        self.assertEqual(session.received, 100)
        self.assertEqual(session.expected, 100)
        self.assertEqual(session.lost, 0)
        self.assertEqual(session.loss_percent, 0.0)

    def test_wraparound_is_not_loss(self):
        feed(self.tracker, list(range(65530, 65536)) + list(range(0, 11)))
        session = self.tracker.snapshot_session()
        self.assertEqual(session.received, 17)
        self.assertEqual(session.expected, 17)
        self.assertEqual(session.lost, 0)
        self.assertEqual(session.wraps, 1)

    def test_gaps_count_as_loss(self):
        feed(self.tracker, [10, 20, 30])
        session = self.tracker.snapshot_session()
        self.assertEqual(session.expected, 21)
        self.assertEqual(session.received, 3)
        self.assertEqual(session.lost, 18)
        self.assertAlmostEqual(session.loss_percent, (1 - 3 / 21) * 100)

    def test_loss_across_wrap(self):
        # 65534, 65535, [0 lost], 1, 2
        feed(self.tracker, [65534, 65535, 1, 2])
        session = self.tracker.snapshot_session()
        self.assertEqual(session.received, 4)
        self.assertEqual(session.expected, 2 + 2)
        # the lost packet at 0 sits at the start of the new window
        self.assertEqual(session.lost, 0)

    def test_early_packet_arriving_late_resets_baseline(self):
        self.tracker.observe(5, 500, 100)
        self.tracker.observe(4, 400, 100)
        self.tracker.observe(6, 600, 100)
        session = self.tracker.snapshot_session()
        self.assertEqual(session.received, 3)
        self.assertEqual(session.expected, 3)
        self.assertEqual(session.wraps, 0)

    def test_late_packet_keeps_end_of_window(self):
        self.tracker.observe(5, 500, 100)
        self.tracker.observe(4, 400, 100)
        session = self.tracker.snapshot_session()
        self.assertEqual(session.expected, 2)
        self.assertEqual(session.lost, 0)

        self.tracker.reset()
        for seq, ts in [(10, 1000), (11, 1160), (12, 1320), (9, 840)]:
            self.tracker.observe(seq, ts, 100)
        session = self.tracker.snapshot_session()
        self.assertEqual(session.received, 4)
        self.assertEqual(session.expected, 4)
        self.assertEqual(session.lost, 0)

    def test_lower_sequence_same_timestamp_is_not_a_wrap(self):
        # two packets of one frame, delivered out of order
        self.tracker.observe(101, 5000, 100)
        self.tracker.observe(100, 5000, 100)
        session = self.tracker.snapshot_session()
        self.assertEqual(session.expected, 2)
        self.assertEqual(session.lost, 0)
        self.assertEqual(session.wraps, 0)

    def test_empty_session_has_no_percentage(self):
        session = self.tracker.snapshot_session()
        self.assertEqual(session.received, 0)
        self.assertEqual(session.expected, 0)
        self.assertIsNone(session.loss_percent)

    def test_reset_starts_new_session(self):
        feed(self.tracker, [10, 20, 30])
        self.tracker.reset()
        self.assertEqual(self.tracker.received_in_session, 0)
        feed(self.tracker, [500, 501])
        session = self.tracker.snapshot_session()
        self.assertEqual((session.received, session.expected), (2, 2))
        self.assertEqual(self.tracker.snapshot_and_reset_interval().received, 2)

    def test_session_survives_interval_reset(self):
        feed(self.tracker, range(0, 50))
        self.tracker.snapshot_and_reset_interval()
        feed(self.tracker, range(50, 100), start_ts=1000 + 50 * SAMPLES_PER_PACKET)
        session = self.tracker.snapshot_session()
        self.assertEqual((session.received, session.expected), (100, 100))


class TestIntervalAccounting(unittest.TestCase):
    def setUp(self):
        self.tracker = SequenceTracker()

    def test_counts_and_bytes(self):
        feed(self.tracker, range(100, 150), byte_len=200)
        interval = self.tracker.snapshot_and_reset_interval()
        self.assertEqual(interval.received, 50)
        self.assertEqual(interval.expected, 50)
        self.assertEqual(interval.bytes_received, 50 * 200)
        self.assertEqual(interval.first_sequence, 100)
        self.assertEqual(interval.first_timestamp, 1000)

    def test_wrap_inside_interval(self):
        feed(self.tracker, list(range(65530, 65536)) + list(range(0, 11)))
        interval = self.tracker.snapshot_and_reset_interval()
        self.assertEqual(interval.received, 17)
        self.assertEqual(interval.expected, 17)
        self.assertEqual(interval.lost, 0)
        self.assertEqual(interval.wraps, 1)

    def test_gaps(self):
        feed(self.tracker, [10, 20, 30])
        interval = self.tracker.snapshot_and_reset_interval()
        self.assertEqual((interval.received, interval.expected, interval.lost), (3, 21, 18))

    def test_single_packet_expects_one(self):
        self.tracker.observe(777, 123456, 172)
        interval = self.tracker.snapshot_and_reset_interval()
        self.assertEqual(interval.expected, 1)
        self.assertEqual(interval.lost, 0)
        self.assertEqual(interval.loss_percent, 0.0)

    def test_empty_interval(self):
        interval = self.tracker.snapshot_and_reset_interval()
        self.assertEqual(interval.received, 0)
        self.assertEqual(interval.expected, 0)
        self.assertIsNone(interval.loss_percent)

    def test_snapshot_resets_interval_and_wrap_count(self):
        feed(self.tracker, [65535, 0, 1])
        first = self.tracker.snapshot_and_reset_interval()
        self.assertEqual((first.expected, first.wraps), (3, 1))

        feed(self.tracker, [2, 3, 4], start_ts=10000)
        second = self.tracker.snapshot_and_reset_interval()
        self.assertEqual(second.received, 3)
        self.assertEqual(second.expected, 3)
        self.assertEqual(second.wraps, 0)

        self.assertEqual(self.tracker.snapshot_and_reset_interval().received, 0)

    def test_concurrent_observe_and_snapshot(self):
        """Every packet lands in exactly one interval snapshot."""
        total = 20000
        reports = []
        done = threading.Event()

        def capture():
            feed(self.tracker, [i % 65536 for i in range(total)])
            done.set()

        thread = threading.Thread(target=capture)
        thread.start()
        while not done.is_set():
            reports.append(self.tracker.snapshot_and_reset_interval())
        thread.join()
        reports.append(self.tracker.snapshot_and_reset_interval())

        self.assertEqual(sum(r.received for r in reports), total)
        self.assertEqual(self.tracker.received_in_session, total)


class TestLossPercent(unittest.TestCase):
    def test_guarded_division(self):
        self.assertIsNone(loss_percent(0, 0))
        self.assertEqual(loss_percent(10, 10), 0.0)
        self.assertAlmostEqual(loss_percent(3, 4), 25.0)


if __name__ == '__main__':
    unittest.main()
