"""Periodic progress reporting and abort checks while a scan runs."""

from __future__ import annotations

import logging
import math
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Callable

log = logging.getLogger(__name__)

UPDATE_INTERVAL = 1
WARMUP_PERIOD = 5
MIN_HITRATE_TIME_WINDOW = 5

_MASK32 = 0xFFFFFFFF
_SECONDS_PER_YEAR = 31556736

CSV_HEADER = (
    "real-time,time-elapsed,time-remaining,"
    "percent-complete,hit-rate,active-send-threads,"
    "sent-total,sent-last-one-sec,sent-avg-per-sec,"
    "recv-success-total,recv-success-last-one-sec,recv-success-avg-per-sec,"
    "recv-total,recv-total-last-one-sec,recv-total-avg-per-sec,"
    "pcap-drop-total,drop-last-one-sec,drop-avg-per-sec,"
    "sendto-fail-total,sendto-fail-last-one-sec,sendto-fail-avg-per-sec"
)


class MonitorAbort(RuntimeError):
    """Raised when the scan must stop because a limit was exceeded."""


@dataclass
class ScanTotals:
    """Counters of the sender and receiver at one moment."""

    sent: int = 0
    tried_sent: int = 0
    send_failures: int = 0
    send_threads: int = 0
    send_complete: bool = False
    send_start: float = 0.0
    send_finish: float = 0.0
    max_targets: int = 0
    max_index: int = 0
    pcap_recv: int = 0
    success_unique: int = 0
    app_success_unique: int = 0
    filter_success: int = 0
    pcap_drop: int = 0
    pcap_ifdrop: int = 0
    recv_complete: bool = False


@dataclass
class MonitorSettings:
    """Scan configuration that the monitor consults."""

    total_shards: int = 1
    cooldown_secs: float = 0
    max_runtime: float = 0
    max_results: int = 0
    min_hitrate: float = 0.0
    max_sendto_failures: int = -1
    app_success: bool = False
    quiet: bool = False
    status_updates_file: str | None = None


@dataclass
class StatusSnapshot:
    """Derived statistics for one update."""

    age: float
    time_remaining: float
    percent_complete: float
    hitrate: float
    app_hitrate: float
    send_threads: int
    complete: bool
    total_sent: int
    total_tried_sent: int
    send_rate: float
    send_rate_avg: float
    recv_success_unique: int
    app_recv_success_unique: int
    recv_rate: float
    recv_avg: float
    total_recv: int
    recv_total_rate: float
    recv_total_avg: float
    app_success_rate: float
    app_success_avg: float
    pcap_drop: int
    pcap_ifdrop: int
    pcap_drop_total: int
    pcap_drop_last: float
    pcap_drop_avg: float
    fail_total: int
    fail_last: float
    fail_avg: float
    seconds_under_min_hitrate: float


def _div(numerator: float, denominator: float) -> float:
    """Floating division that yields inf or nan instead of raising on zero."""
    numerator = float(numerator)
    denominator = float(denominator)
    if denominator == 0.0:
        if numerator == 0.0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


def _since(current: int, last: int) -> int:
    return (current - last) & _MASK32


def _u32(value: float) -> int:
    if math.isnan(value) or value <= 0:
        return 0
    if math.isinf(value) or value >= _MASK32:
        return _MASK32
    return int(value)


def compute_remaining_time(
    settings: MonitorSettings,
    totals: ScanTotals,
    age: float,
    tried_sent: int,
    now: float,
) -> float:
    """Estimate the seconds left in the scan, cooldown included."""
    if totals.send_complete:
        return settings.cooldown_secs - (now - totals.send_finish)
    estimates = []
    if totals.max_targets:
        done = _div(tried_sent, totals.max_targets // settings.total_shards)
        estimates.append((1.0 - done) * _div(age, done) + settings.cooldown_secs)
    if settings.max_runtime:
        estimates.append((settings.max_runtime - age) + settings.cooldown_secs)
    if settings.max_results:
        done = _div(totals.filter_success, settings.max_results)
        estimates.append((1.0 - done) * _div(age, done))
    if totals.max_index:
        done = _div(tried_sent, totals.max_index // settings.total_shards)
        estimates.append((1.0 - done) * _div(age, done) + settings.cooldown_secs)
    best = math.inf
    for estimate in estimates:
        if estimate < best:
            best = estimate
    return best


def format_number(value: float) -> str:
    """Short rendering of a count or rate with a K or M suffix."""
    n = _u32(value)
    if n < 1000:
        return f"{n} "
    if n < 1_000_000:
        figs = 2 if n < 10_000 else 1 if n < 100_000 else 0
        return f"{n / 1000:.{figs}f} K"
    figs = 2 if n < 10_000_000 else 1 if n < 100_000_000 else 0
    return f"{n / 1_000_000:.{figs}f} M"


def format_duration(seconds: float, remaining: bool) -> str:
    """Render a duration; ``remaining`` selects the coarse estimate style."""
    total = _u32(seconds)
    years = total // _SECONDS_PER_YEAR
    days = (total % _SECONDS_PER_YEAR) // 86400
    hours = (total % 86400) // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if remaining:
        if years > 0:
            return f"{years} years"
        if days > 9:
            return f"{days}d"
        if days > 0:
            return f"{days}d{hours:02d}h"
        if hours > 9:
            return f"{hours}h"
        if hours > 0:
            return f"{hours}h{minutes:02d}m"
        if minutes > 9:
            return f"{minutes}m"
        if minutes > 0:
            return f"{minutes}m{secs:02d}s"
        return f"{secs}s"
    if days > 0:
        return f"{days}d{hours}:{minutes:02d}:{secs:02d}"
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class Monitor:
    """Turns successive counter readings into rates, status lines and checks."""

    def __init__(self, settings: MonitorSettings | None = None):
        self.settings = settings if settings is not None else MonitorSettings()
        self._last_now = 0.0
        self._last_sent = 0
        self._last_send_failures = 0
        self._last_recv_net_success = 0
        self._last_recv_app_success = 0
        self._last_recv_total = 0
        self._last_pcap_drop = 0
        self._min_hitrate_start = 0.0
        self._send_rate = 0.0

    def update(self, totals: ScanTotals, now: float) -> StatusSnapshot:
        """Compute statistics for this reading and remember it for the next."""
        s = self.settings
        age = now - totals.send_start
        delta = now - self._last_now
        remaining = compute_remaining_time(s, totals, age, totals.tried_sent, now)

        success = totals.success_unique
        app_success = totals.app_success_unique
        total_recv = totals.pcap_recv
        sent = totals.sent

        if s.app_success:
            app_rate = _div(_since(app_success, self._last_recv_app_success), delta)
            app_avg = _div(app_success, age)
        else:
            app_rate = app_avg = 0.0

        if sent:
            hitrate = success * 100.0 / sent
            app_hitrate = app_success * 100.0 / sent
        else:
            hitrate = app_hitrate = 0.0

        if age > WARMUP_PERIOD and hitrate < s.min_hitrate:
            if abs(self._min_hitrate_start) < 1e-5:
                self._min_hitrate_start = now
        else:
            self._min_hitrate_start = 0.0
        if abs(self._min_hitrate_start) < 1e-5:
            under = 0.0
        else:
            under = now - self._min_hitrate_start

        if not totals.send_complete:
            self._send_rate = _div(_since(sent, self._last_sent), delta)
            send_avg = _div(sent, age)
        else:
            send_avg = _div(sent, totals.send_finish - totals.send_start)

        drop_total = (totals.pcap_drop + totals.pcap_ifdrop) & _MASK32
        fail_total = totals.send_failures

        snapshot = StatusSnapshot(
            age=age,
            time_remaining=remaining,
            percent_complete=_div(100.0 * age, age + remaining),
            hitrate=hitrate,
            app_hitrate=app_hitrate,
            send_threads=totals.send_threads,
            complete=totals.send_complete,
            total_sent=sent,
            total_tried_sent=totals.tried_sent,
            send_rate=self._send_rate,
            send_rate_avg=send_avg,
            recv_success_unique=success,
            app_recv_success_unique=app_success,
            recv_rate=_div(_since(success, self._last_recv_net_success), delta),
            recv_avg=_div(success, age),
            total_recv=total_recv,
            recv_total_rate=_div(_since(total_recv, self._last_recv_total), delta),
            recv_total_avg=_div(total_recv, age),
            app_success_rate=app_rate,
            app_success_avg=app_avg,
            pcap_drop=totals.pcap_drop,
            pcap_ifdrop=totals.pcap_ifdrop,
            pcap_drop_total=drop_total,
            pcap_drop_last=_div(_since(drop_total, self._last_pcap_drop), delta),
            pcap_drop_avg=_div(drop_total, age),
            fail_total=fail_total,
            fail_last=_div(_since(fail_total, self._last_send_failures), delta),
            fail_avg=_div(fail_total, age),
            seconds_under_min_hitrate=under,
        )

        self._last_now = now
        self._last_sent = sent
        self._last_recv_net_success = success
        self._last_recv_app_success = app_success
        self._last_pcap_drop = drop_total
        self._last_send_failures = fail_total
        self._last_recv_total = total_recv
        return snapshot

    def status_line(self, snapshot: StatusSnapshot) -> str:
        """The one-line progress report, without a trailing newline."""
        snap = snapshot
        if snap.age < WARMUP_PERIOD:
            left = ""
        else:
            r = snap.time_remaining
            left = f" ({format_duration(math.ceil(r) if math.isfinite(r) else r, True)} left)"
        head = f"{format_duration(snap.age, False):>5} {snap.percent_complete:.0f}%{left}; "
        verb = "sent" if self.settings.app_success else "send"
        if snap.complete:
            send = (
                f"{verb}: {snap.total_sent} done "
                f"({format_number(snap.send_rate_avg)}p/s avg); "
            )
        else:
            send = (
                f"{verb}: {snap.total_sent} {format_number(snap.send_rate)}p/s "
                f"({format_number(snap.send_rate_avg)}p/s avg); "
            )
        recv = (
            f"recv: {snap.recv_success_unique} {format_number(snap.recv_rate)}p/s "
            f"({format_number(snap.recv_avg)}p/s avg); "
        )
        drops = (
            f"drops: {format_number(snap.pcap_drop_last)}p/s "
            f"({format_number(snap.pcap_drop_avg)}p/s avg); "
        )
        if self.settings.app_success:
            app = (
                f"app success: {snap.app_recv_success_unique} "
                f"{format_number(snap.app_success_rate)}p/s "
                f"({format_number(snap.app_success_avg)}p/s avg); "
            )
            tail = f"hitrate: {snap.hitrate:.2f}% app hitrate: {snap.app_hitrate:.2f}%"
            return head + send + recv + app + drops + tail
        return head + send + recv + drops + f"hitrate: {snap.hitrate:.2f}%"

    def drop_warnings(self, snapshot: StatusSnapshot) -> list[str]:
        """Warnings about dropped packets and send failures; each is also logged."""
        warnings = []
        if _div(snapshot.pcap_drop_last, snapshot.recv_rate) > 0.05:
            warnings.append(
                f"Dropped {snapshot.pcap_drop_last:.0f} packets in the last second, "
                f"({snapshot.pcap_drop_total} total dropped "
                f"(pcap: {snapshot.pcap_drop} + iface: {snapshot.pcap_ifdrop}))"
            )
        if _div(snapshot.fail_last, snapshot.send_rate) > 0.01:
            warnings.append(
                f"Failed to send {snapshot.fail_last:.0f} packets/sec "
                f"({snapshot.fail_total} total failures)"
            )
        for message in warnings:
            log.warning(message)
        return warnings

    def check_limits(self, snapshot: StatusSnapshot) -> None:
        """Raise MonitorAbort if the hit rate or send failures call for stopping."""
        s = self.settings
        if snapshot.seconds_under_min_hitrate >= MIN_HITRATE_TIME_WINDOW:
            raise MonitorAbort(
                f"hitrate below {s.min_hitrate:.0f} for "
                f"{snapshot.seconds_under_min_hitrate:.0f} seconds. aborting scan."
            )
        if s.max_sendto_failures >= 0 and snapshot.fail_total > s.max_sendto_failures:
            raise MonitorAbort(
                f"maximum number of sendto failures ({s.max_sendto_failures}) exceeded"
            )

    def csv_header(self) -> str:
        """Column names of the status-updates file."""
        return CSV_HEADER

    def csv_row(self, snapshot: StatusSnapshot, timestamp: datetime | str | None = None) -> str:
        """One status-updates line, without a trailing newline."""
        if timestamp is None:
            timestamp = datetime.now()
        if isinstance(timestamp, datetime):
            timestamp = timestamp.strftime("%Y-%m-%d %H:%M:%S")
        snap = snapshot

        def rate(value: float) -> str:
            return f"{value:.0f}"

        values = [
            timestamp,
            str(_u32(snap.age)),
            str(_u32(snap.time_remaining)),
            f"{snap.percent_complete:.6f}",
            f"{snap.hitrate:.6f}",
            str(snap.send_threads),
            str(snap.total_sent),
            rate(snap.send_rate),
            rate(snap.send_rate_avg),
            str(snap.recv_success_unique),
            rate(snap.recv_rate),
            rate(snap.recv_avg),
            str(snap.total_recv),
            rate(snap.recv_total_rate),
            rate(snap.recv_total_avg),
            str(snap.pcap_drop_total),
            rate(snap.pcap_drop_last),
            rate(snap.pcap_drop_avg),
            str(snap.fail_total),
            rate(snap.fail_last),
            rate(snap.fail_avg),
        ]
        return ",".join(values)

    def run(
        self,
        read_totals: Callable[[], ScanTotals],
        *,
        stream: IO[str] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Report once per interval until both sending and receiving are complete."""
        out = stream if stream is not None else sys.stderr
        status = None
        path = self.settings.status_updates_file
        if path:
            try:
                status = open(path, "w", encoding="utf-8")
            except OSError as exc:
                raise OSError(f"could not open status updates file ({path}): {exc}") from exc
            log.debug("status updates CSV will be saved to %s", path)
            status.write(self.csv_header() + "\n")
            status.flush()
        try:
            while True:
                totals = read_totals()
                if totals.send_complete and totals.recv_complete:
                    break
                snapshot = self.update(totals, clock())
                self.drop_warnings(snapshot)
                self.check_limits(snapshot)
                if not self.settings.quiet:
                    out.write(self.status_line(snapshot) + "\n")
                    out.flush()
                if status is not None:
                    status.write(self.csv_row(snapshot) + "\n")
                    status.flush()
                sleep(UPDATE_INTERVAL)
            if not self.settings.quiet:
                out.flush()
        finally:
            if status is not None:
                status.close()