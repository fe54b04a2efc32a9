import collections
import enum
import logging
import os
import tempfile
import time

from waydroid_tools.errors import LockHeldError

LockRecord = collections.namedtuple("LockRecord", ["pid", "acquired_at"])


class LockState(enum.Enum):
    UNLOCKED = "unlocked"
    HELD = "held"
    STALE = "stale"


def pid_alive(pid):
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


def parse_record(content):
    try:
        pid, acquired_at = content.strip().split("|", 1)
        return LockRecord(int(pid), int(acquired_at))
    except ValueError:
        return None


def format_record(record):
    return "%d|%d" % (record.pid, record.acquired_at)


def clean(path):
    """Remove the lock file whatever it holds. Returns True if one existed."""
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    return True


class LockManager:
    """Single-instance guard backed by a ``pid|epoch`` marker file.

    A record is valid while its pid is alive and it is younger than
    ``stale_after`` seconds. Dead-pid records are cleared without asking;
    live but old ones are only cleared after ``confirm`` agrees.
    """

    def __init__(self, path, stale_after=3600, confirm=None,
                 clock=time.time, is_alive=pid_alive):
        self.path = path
        self.stale_after = stale_after
        self.confirm = confirm
        self.clock = clock
        self.is_alive = is_alive
        self.held = False

    def read(self):
        try:
            with open(self.path, "r") as handle:
                content = handle.read()
        except FileNotFoundError:
            return None
        record = parse_record(content)
        if record is None:
            logging.debug("Unreadable lock record in %s: %r" %
                          (self.path, content))
            return LockRecord(0, 0)
        return record

    def state(self, record=None):
        record = record if record is not None else self.read()
        if record is None:
            return LockState.UNLOCKED
        if not self.is_alive(record.pid):
            return LockState.STALE
        return LockState.HELD

    def age(self, record):
        return int(self.clock()) - record.acquired_at

    def _clear(self, record):
        """Remove ``record`` if it may be replaced, else raise LockHeldError."""
        state = self.state(record)
        if state is LockState.HELD:
            age = self.age(record)
            if age <= self.stale_after:
                raise LockHeldError(self.path, record)
            logging.warning(
                "Lock held by pid %s for %s seconds (lock file: %s)" %
                (record.pid, age, self.path))
            if not (self.confirm and self.confirm(
                    "The other instance may be stuck. Remove its lock?")):
                raise LockHeldError(self.path, record)
        else:
            logging.debug("Removing stale lock of pid %s" % record.pid)
        clean(self.path)

    def _publish(self, record):
        """Create the lock file holding ``record``, only if none exists.

        The record is written to a private file first and hard-linked into
        place, so the lock never appears empty or half written.
        """
        fd, tmp = tempfile.mkstemp(
            prefix=".%s." % os.path.basename(self.path),
            dir=os.path.dirname(self.path) or ".")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(format_record(record))
            os.chmod(tmp, 0o644)
            os.link(tmp, self.path)
        except FileExistsError:
            return False
        finally:
            os.remove(tmp)
        return True

    def acquire(self):
        record = None
        for _attempt in range(3):
            record = self.read()
            if record is not None:
                self._clear(record)
            mine = LockRecord(os.getpid(), int(self.clock()))
            if self._publish(mine):
                self.held = True
                return mine
        raise LockHeldError(
            self.path, self.read() or record or LockRecord(0, 0))

    def release(self):
        clean(self.path)
        self.held = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
