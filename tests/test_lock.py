"""
Tests for the single-instance lock file.

Process liveness and the clock are injected, so stale, held and expired
records can be simulated without spawning processes or sleeping.
"""

import os
import tempfile
import threading
import unittest
from unittest.mock import MagicMock, patch

from waydroid_tools import lock
from waydroid_tools.errors import LockHeldError
from waydroid_tools.lock import LockManager, LockRecord, LockState

NOW = 1700000000


class LockTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = os.path.join(self.tmp.name, "waydroid-manager.lock")

    def write(self, content):
        with open(self.path, "w") as handle:
            handle.write(content)

    def read(self):
        with open(self.path) as handle:
            return handle.read()

    def manager(self, alive=True, confirm=None, now=NOW):
        return LockManager(self.path, stale_after=3600, confirm=confirm,
                           clock=lambda: now, is_alive=lambda pid: alive)


class TestAcquire(LockTestCase):

    def test_writes_pid_and_timestamp(self):
        record = self.manager().acquire()
        self.assertEqual(record, LockRecord(os.getpid(), NOW))
        self.assertEqual(self.read(), "%d|%d" % (os.getpid(), NOW))

    def test_second_acquire_fails_fast(self):
        self.manager().acquire()
        before = self.read()
        with self.assertRaises(LockHeldError) as ctx:
            self.manager(now=NOW + 5).acquire()
        self.assertEqual(self.read(), before)
        self.assertEqual(ctx.exception.record.pid, os.getpid())

    def test_concurrent_acquire_has_one_winner(self):
        barrier = threading.Barrier(2)
        read = LockManager.read
        outcomes = []

        def racing_read(manager):
            record = read(manager)
            if record is None:
                # Both callers see an empty slot before either creates it.
                barrier.wait(timeout=5)
            return record

        def contend():
            try:
                self.manager().acquire()
                outcomes.append("acquired")
            except LockHeldError:
                outcomes.append("held")

        with patch.object(LockManager, "read", racing_read):
            threads = [threading.Thread(target=contend) for _ in range(2)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=10)
        self.assertEqual(sorted(outcomes), ["acquired", "held"])
        self.assertEqual(self.read(), "%d|%d" % (os.getpid(), NOW))

    def test_lost_race_leaves_no_temporary_files(self):
        self.write("4242|%d" % NOW)
        with patch.object(LockManager, "read", return_value=None):
            with self.assertRaises(LockHeldError):
                self.manager().acquire()
        self.assertEqual(os.listdir(self.tmp.name),
                         ["waydroid-manager.lock"])
        self.assertEqual(self.read(), "4242|%d" % NOW)

    def test_record_at_threshold_is_still_held(self):
        self.write("4242|%d" % (NOW - 3600))
        confirm = MagicMock(return_value=True)
        with self.assertRaises(LockHeldError):
            self.manager(confirm=confirm).acquire()
        confirm.assert_not_called()

    def test_dead_pid_is_cleared_regardless_of_age(self):
        for age in (0, 10, 3600, 86400):
            with self.subTest(age=age):
                self.write("4242|%d" % (NOW - age))
                confirm = MagicMock(return_value=False)
                record = self.manager(alive=False, confirm=confirm).acquire()
                self.assertEqual(record.pid, os.getpid())
                self.assertEqual(self.read(), "%d|%d" % (os.getpid(), NOW))
                confirm.assert_not_called()

    def test_unreadable_record_is_stale(self):
        self.write("not a lock record")
        manager = LockManager(self.path, clock=lambda: NOW)
        self.assertIs(manager.state(), LockState.STALE)
        manager.acquire()
        self.assertEqual(self.read(), "%d|%d" % (os.getpid(), NOW))

    def test_expired_live_lock_declined(self):
        self.write("4242|%d" % (NOW - 7200))
        confirm = MagicMock(return_value=False)
        with self.assertRaises(LockHeldError):
            self.manager(confirm=confirm).acquire()
        confirm.assert_called_once()
        self.assertEqual(self.read(), "4242|%d" % (NOW - 7200))

    def test_expired_live_lock_without_prompt_is_kept(self):
        self.write("4242|%d" % (NOW - 7200))
        with self.assertRaises(LockHeldError):
            self.manager(confirm=None).acquire()
        self.assertEqual(self.read(), "4242|%d" % (NOW - 7200))

    def test_expired_live_lock_confirmed(self):
        self.write("4242|%d" % (NOW - 7200))
        confirm = MagicMock(return_value=True)
        self.manager(confirm=confirm).acquire()
        self.assertEqual(self.read(), "%d|%d" % (os.getpid(), NOW))

    def test_states(self):
        manager = self.manager()
        self.assertIs(manager.state(), LockState.UNLOCKED)
        self.write("4242|%d" % NOW)
        self.assertIs(manager.state(), LockState.HELD)
        self.assertIs(self.manager(alive=False).state(), LockState.STALE)


class TestRelease(LockTestCase):

    def test_normal_exit(self):
        with self.manager():
            self.assertTrue(os.path.exists(self.path))
        self.assertFalse(os.path.exists(self.path))

    def test_interrupt(self):
        with self.assertRaises(KeyboardInterrupt):
            with self.manager():
                raise KeyboardInterrupt()
        self.assertFalse(os.path.exists(self.path))

    def test_error_exit(self):
        with self.assertRaises(RuntimeError):
            with self.manager():
                raise RuntimeError("boom")
        self.assertFalse(os.path.exists(self.path))

    def test_signal_exit(self):
        with self.assertRaises(SystemExit):
            with self.manager():
                raise SystemExit(143)
        self.assertFalse(os.path.exists(self.path))

    def test_failed_acquire_leaves_other_lock(self):
        self.write("4242|%d" % NOW)
        with self.assertRaises(LockHeldError):
            with self.manager():
                self.fail("body must not run")
        self.assertEqual(self.read(), "4242|%d" % NOW)

    def test_release_without_file(self):
        manager = self.manager()
        manager.release()
        self.assertFalse(os.path.exists(self.path))


class TestClean(LockTestCase):

    def test_removes_any_content(self):
        self.write("garbage\n")
        self.assertTrue(lock.clean(self.path))
        self.assertFalse(os.path.exists(self.path))

    def test_missing_file(self):
        self.assertFalse(lock.clean(self.path))


class TestHelpers(unittest.TestCase):

    def test_parse_record(self):
        self.assertEqual(lock.parse_record("12|34\n"), LockRecord(12, 34))
        self.assertIsNone(lock.parse_record("12"))
        self.assertIsNone(lock.parse_record("a|b"))

    def test_pid_alive(self):
        self.assertTrue(lock.pid_alive(os.getpid()))
        self.assertFalse(lock.pid_alive(0))
        self.assertFalse(lock.pid_alive(-1))


if __name__ == "__main__":
    unittest.main()
