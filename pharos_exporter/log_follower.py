"""Consensus log follower.

Tails the node's log file, surviving rotation and truncation, and turns
propose/endorse lines into metric updates. Only newline-terminated lines are
parsed; a trailing partial line stays buffered until the writer finishes it.
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from pharos_exporter.errors import ConfigError
from pharos_exporter.metrics import MetricsState

log = logging.getLogger("pharos_exporter.log_follower")

DEFAULT_POLL_INTERVAL = 1.0

PROPOSE_MARKER = "Propose, seq:"
ENDORSE_MARKER = "endorse seq "
PROPOSER_MARKER = "proposer "

PROPOSE = "propose"
ENDORSE = "endorse"

# Lines handled before yielding to the event loop while draining a backlog.
READ_BATCH = 1000

_TS_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})$"
)


# ── Line parsing ─────────────────────────────────────────────────────────────

def parse_rfc3339_ns(ts: str) -> float:
    """Parse an RFC 3339 timestamp with up to nanosecond precision to epoch seconds."""
    m = _TS_RE.match(ts)
    if m is None:
        raise ValueError(f"not an RFC 3339 timestamp: {ts!r}")
    base, frac, zone = m.groups()
    dt = datetime.strptime(base.upper(), "%Y-%m-%dT%H:%M:%S")
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    dt = dt.replace(tzinfo=tz)
    frac = (frac or "").ljust(9, "0")
    return dt.timestamp() + int(frac) / 1e9


def parse_log_timestamp(line: str, now=time.time) -> float:
    """Leading ``[timestamp]`` of a line, or wall-clock time if absent or malformed."""
    if not line.startswith("["):
        return now()
    end = line.find("]")
    if end <= 1:
        return now()
    try:
        return parse_rfc3339_ns(line[1:end])
    except ValueError:
        return now()


def parse_proposer(line: str) -> str | None:
    idx = line.find(PROPOSER_MARKER)
    if idx < 0:
        return None
    rest = line[idx + len(PROPOSER_MARKER):]
    end = len(rest)
    for sep in (",", " ", "\n", "\r"):
        pos = rest.find(sep)
        if 0 <= pos < end:
            end = pos
    return rest[:end] or None


@dataclass(frozen=True)
class LineEvent:
    kind: str
    timestamp: float
    proposer: str | None = None


def parse_line(line: str, now=time.time) -> LineEvent | None:
    if PROPOSE_MARKER in line:
        return LineEvent(PROPOSE, parse_log_timestamp(line, now))
    if ENDORSE_MARKER in line:
        return LineEvent(ENDORSE, parse_log_timestamp(line, now), parse_proposer(line))
    return None


# ── Follower ─────────────────────────────────────────────────────────────────

def file_identity(st: os.stat_result) -> int:
    """Inode number, or a (device, creation time) fingerprint where the platform has none."""
    if st.st_ino:
        return st.st_ino
    created = getattr(st, "st_birthtime_ns", None)
    if created is None:
        created = st.st_ctime_ns
    return hash((st.st_dev, created))


@dataclass
class LogFollowerConfig:
    path: str
    poll_interval: float = DEFAULT_POLL_INTERVAL
    from_start: bool = False
    check_propose: bool = True
    check_endorse: bool = True


@dataclass
class LogCursor:
    inode: int = 0
    offset: int = 0


class LogFollower:
    """Tails a log file, reopening on rotation.

    Rotation is detected after each end-of-stream by re-statting the path:
    a new inode, or a size smaller than what was already consumed, means
    the old file is gone and the new one is read from offset 0.
    """

    def __init__(self, config: LogFollowerConfig, metrics: MetricsState, clock=time.time):
        if not config.path:
            raise ConfigError("log path is required")
        if config.poll_interval <= 0:
            config = replace(config, poll_interval=DEFAULT_POLL_INTERVAL)
        self.config = config
        self.metrics = metrics
        self.cursor = LogCursor()
        self.file = None
        self._partial = b""
        self._clock = clock

    def open(self, at_end: bool):
        """Open the path; FileNotFoundError propagates to the caller."""
        f = open(self.config.path, "rb")
        try:
            st = os.fstat(f.fileno())
            offset = f.seek(0, os.SEEK_END) if at_end else 0
        except OSError:
            f.close()
            raise
        self.file = f
        self._partial = b""
        self.cursor = LogCursor(inode=file_identity(st), offset=offset)
        log.info("Opened %s (inode=%d, offset=%d)", self.config.path,
                 self.cursor.inode, self.cursor.offset)

    def close(self):
        if self.file:
            self.file.close()
            self.file = None
        self._partial = b""

    def apply_event(self, event: LineEvent | None):
        if event is None:
            return
        if event.kind == PROPOSE:
            if self.config.check_propose:
                self.metrics.record_propose(event.timestamp)
        elif event.kind == ENDORSE:
            if self.config.check_endorse:
                self.metrics.record_endorse(event.timestamp, event.proposer)

    def handle_line(self, line: str):
        self.apply_event(parse_line(line, self._clock))

    def read_available(self, limit: int | None = None) -> int:
        """Process complete lines until end-of-stream or ``limit`` lines.

        Returns the number of lines processed.
        """
        n = 0
        while limit is None or n < limit:
            chunk = self.file.readline()
            if not chunk:
                break
            if not chunk.endswith(b"\n"):
                self._partial += chunk
                break
            raw = self._partial + chunk
            self._partial = b""
            self.handle_line(raw.decode("utf-8", errors="replace"))
            self.cursor.offset += len(raw)
            n += 1
        return n

    def check_rotation(self) -> bool:
        """Reopen from offset 0 if the path now refers to a different or shorter file."""
        try:
            st = os.stat(self.config.path)
        except FileNotFoundError:
            # Mid-rotation: old file moved away, new one not created yet.
            return False
        inode = file_identity(st)
        # Read position includes the buffered partial line, not just completed lines.
        position = self.cursor.offset + len(self._partial)
        if inode == self.cursor.inode and st.st_size >= position:
            return False

        log.info(
            "Rotation detected on %s: inode %d->%d, size=%d, position=%d",
            self.config.path, self.cursor.inode, inode, st.st_size, position,
        )
        if self._partial:
            log.debug("Dropping %d buffered bytes from rotated file", len(self._partial))
        self.close()
        try:
            self.open(at_end=False)
        except FileNotFoundError:
            # Gone again before we could open it; the run loop waits for it.
            pass
        return True

    async def run(self):
        at_end = not self.config.from_start
        try:
            while True:
                if self.file is None:
                    try:
                        self.open(at_end)
                    except FileNotFoundError:
                        log.debug("Waiting for %s to appear", self.config.path)
                        await asyncio.sleep(self.config.poll_interval)
                        continue
                    at_end = False

                if self.read_available(READ_BATCH) >= READ_BATCH:
                    await asyncio.sleep(0)
                    continue
                if self.check_rotation():
                    continue
                await asyncio.sleep(self.config.poll_interval)
        finally:
            self.close()
