import unittest

from gifts.polling import PollPolicy


class PollPolicyTests(unittest.TestCase):
    def test_delay_grows_and_is_capped(self):
        policy = PollPolicy(interval_seconds=2, backoff_factor=2, max_interval_seconds=10)
        self.assertEqual(policy.delay_for(1), 2)
        self.assertEqual(policy.delay_for(2), 4)
        self.assertEqual(policy.delay_for(3), 8)
        self.assertEqual(policy.delay_for(4), 10)

    def test_attempts_are_bounded_and_sleep_between(self):
        sleeps = []
        policy = PollPolicy(max_attempts=3, interval_seconds=1, backoff_factor=1, sleep=sleeps.append)
        self.assertEqual(list(policy.attempts()), [1, 2, 3])
        self.assertEqual(sleeps, [1, 1])

    def test_exhausted_at_max_attempts(self):
        policy = PollPolicy(max_attempts=5)
        self.assertFalse(policy.exhausted(4))
        self.assertTrue(policy.exhausted(5))
