"""
Sliding-window rate limiting for faucet requests.

Two independent gates guard every dispense:

- request frequency per recipient address and per client IP;
- token value per (address, denom) over a longer window.

State lives in memory and is mutated only on the event loop. A JSON snapshot
is flushed periodically so limits survive a restart; losing it is tolerable.
"""

import asyncio
import copy
import json
import logging
import math
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.errors import RateLimitExceededError
from ..core.models import TokenAmount

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

SNAPSHOT_VERSION = 1


def address_key(address: str) -> str:
    return f"address:{address}"


def ip_key(ip: str) -> str:
    return f"ip:{ip}"


class FrequencyLimiter:
    """Counts timestamps per key inside a sliding window."""

    def __init__(self, window_seconds: float = 43200.0, clock: Clock = time.time):
        self.window_seconds = window_seconds
        self.clock = clock
        self._entries: Dict[str, List[float]] = {}

    def _prune(self, key: str) -> List[float]:
        cutoff = self.clock() - self.window_seconds
        entries = [ts for ts in self._entries.get(key, []) if ts > cutoff]
        if entries:
            self._entries[key] = entries
        else:
            self._entries.pop(key, None)
        return entries

    def count(self, key: str) -> int:
        return len(self._prune(key))

    def check(self, key: str, limit: int) -> bool:
        return self.count(key) < limit

    def record(self, key: str) -> float:
        self._prune(key)
        ts = self.clock()
        self._entries.setdefault(key, []).append(ts)
        return ts

    def discard(self, key: str, ts: float) -> None:
        """Drop one entry previously returned by ``record``."""
        entries = self._entries.get(key)
        if not entries or ts not in entries:
            return
        entries.remove(ts)
        if not entries:
            del self._entries[key]

    def reset_time(self, key: str) -> int:
        """Seconds until the oldest surviving entry leaves the window."""
        entries = self._prune(key)
        if not entries:
            return 0
        return max(0, math.ceil(entries[0] + self.window_seconds - self.clock()))

    def snapshot(self) -> Dict[str, List[float]]:
        for key in list(self._entries):
            self._prune(key)
        return copy.deepcopy(self._entries)

    def restore(self, data: Dict[str, List[float]]) -> None:
        self._entries = {key: sorted(float(ts) for ts in stamps) for key, stamps in data.items()}
        for key in list(self._entries):
            self._prune(key)


@dataclass
class AllowanceCheck:
    allowed: bool
    available: Dict[str, int] = field(default_factory=dict)
    exceeded: List[str] = field(default_factory=list)


class TokenAllowanceTracker:
    """
    Caps the value each address may receive per token and window.

    Usage is the sum of the amounts actually sent that are still inside the
    window, so a partial top-up consumes only what it moved.
    """

    def __init__(
        self,
        limits: Dict[str, int],
        window_seconds: float = 86400.0,
        clock: Clock = time.time,
    ):
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self.clock = clock
        self._entries: Dict[str, List[Tuple[float, int]]] = {}

    @staticmethod
    def _key(address: str, denom: str) -> str:
        return f"{address}:{denom}"

    def _prune(self, key: str) -> List[Tuple[float, int]]:
        cutoff = self.clock() - self.window_seconds
        entries = [(ts, amount) for ts, amount in self._entries.get(key, []) if ts > cutoff]
        if entries:
            self._entries[key] = entries
        else:
            self._entries.pop(key, None)
        return entries

    def usage(self, address: str, denom: str) -> int:
        return sum(amount for _, amount in self._prune(self._key(address, denom)))

    def available(self, address: str, denom: str) -> Optional[int]:
        """Remaining allowance, or None for denoms without a configured cap."""
        limit = self.limits.get(denom)
        if limit is None:
            return None
        return max(0, limit - self.usage(address, denom))

    def check(self, address: str, needed: Sequence[TokenAmount]) -> AllowanceCheck:
        result = AllowanceCheck(allowed=True)
        for token in needed:
            available = self.available(address, token.denom)
            if available is None:
                continue
            result.available[token.denom] = available
            if token.amount > available:
                result.allowed = False
                result.exceeded.append(token.denom)
        return result

    def record(self, address: str, sent: Sequence[TokenAmount]) -> List[Tuple[str, Tuple[float, int]]]:
        now = self.clock()
        recorded = []
        for token in sent:
            if token.amount <= 0:
                continue
            key = self._key(address, token.denom)
            self._prune(key)
            entry = (now, token.amount)
            self._entries.setdefault(key, []).append(entry)
            recorded.append((key, entry))
        return recorded

    def discard(self, recorded: Sequence[Tuple[str, Tuple[float, int]]]) -> None:
        for key, entry in recorded:
            entries = self._entries.get(key)
            if not entries or entry not in entries:
                continue
            entries.remove(entry)
            if not entries:
                del self._entries[key]

    def reset_time(self, address: str, denoms: Optional[Sequence[str]] = None) -> int:
        """Seconds until the oldest entry for ``address`` expires."""
        prefix = f"{address}:"
        oldest = None
        for key in list(self._entries):
            if not key.startswith(prefix):
                continue
            if denoms is not None and key[len(prefix):] not in denoms:
                continue
            entries = self._prune(key)
            if entries and (oldest is None or entries[0][0] < oldest):
                oldest = entries[0][0]
        if oldest is None:
            return 0
        return max(0, math.ceil(oldest + self.window_seconds - self.clock()))

    def snapshot(self) -> Dict[str, List[List[Any]]]:
        for key in list(self._entries):
            self._prune(key)
        return {
            key: [[ts, str(amount)] for ts, amount in entries]
            for key, entries in self._entries.items()
        }

    def restore(self, data: Dict[str, List[List[Any]]]) -> None:
        self._entries = {
            key: sorted((float(ts), int(amount)) for ts, amount in entries)
            for key, entries in data.items()
        }
        for key in list(self._entries):
            self._prune(key)


@dataclass
class Reservation:
    """Quota taken by an admitted request, held until its send settles."""
    frequency: List[Tuple[str, float]] = field(default_factory=list)
    allowance: List[Tuple[str, Tuple[float, int]]] = field(default_factory=list)


class RateLimiter:
    """
    Admission control for dispenses.

    ``admit`` checks every gate and, in the same synchronous step, reserves
    the quota it grants, so concurrent requests see each other's claims.
    A failed send hands its reservation back through ``release``.
    """

    def __init__(
        self,
        frequency: FrequencyLimiter,
        allowance: TokenAllowanceTracker,
        *,
        address_limit: int = 1,
        ip_limit: int = 10,
    ):
        self.frequency = frequency
        self.allowance = allowance
        self.address_limit = address_limit
        self.ip_limit = ip_limit

    def admit(self, address: str, ip: str, needed: Sequence[TokenAmount]) -> Reservation:
        """Reserve quota for one dispense, or raise RateLimitExceededError."""
        gates: Dict[str, Dict[str, Any]] = {}
        retry_after = 0

        addr = address_key(address)
        if not self.frequency.check(addr, self.address_limit):
            reset = self.frequency.reset_time(addr)
            gates["address"] = {
                "limit": self.address_limit,
                "count": self.frequency.count(addr),
                "reset_seconds": reset,
            }
            retry_after = max(retry_after, reset)

        if ip:
            ip_k = ip_key(ip)
            if not self.frequency.check(ip_k, self.ip_limit):
                reset = self.frequency.reset_time(ip_k)
                gates["ip"] = {
                    "limit": self.ip_limit,
                    "count": self.frequency.count(ip_k),
                    "reset_seconds": reset,
                }
                retry_after = max(retry_after, reset)

        allowance = self.allowance.check(address, needed)
        if not allowance.allowed:
            reset = self.allowance.reset_time(address, allowance.exceeded)
            gates["token_allowance"] = {
                "exceeded": allowance.exceeded,
                "available": {denom: str(amount) for denom, amount in allowance.available.items()},
                "reset_seconds": reset,
            }
            retry_after = max(retry_after, reset)

        if gates:
            logger.info(f"Rate limit hit for {address} from {ip}: {sorted(gates)}")
            raise RateLimitExceededError(
                f"Rate limit exceeded ({', '.join(sorted(gates))})",
                retry_after=retry_after,
                details={"gates": gates, "retry_after": retry_after},
            )

        reservation = Reservation()
        reservation.frequency.append((addr, self.frequency.record(addr)))
        if ip:
            ip_k = ip_key(ip)
            reservation.frequency.append((ip_k, self.frequency.record(ip_k)))
        reservation.allowance = self.allowance.record(address, needed)
        return reservation

    def release(self, reservation: Reservation) -> None:
        """Return the quota of a request whose send failed."""
        for key, ts in reservation.frequency:
            self.frequency.discard(key, ts)
        self.allowance.discard(reservation.allowance)
        reservation.frequency = []
        reservation.allowance = []

    def snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "saved_at": self.frequency.clock(),
            "frequency": self.frequency.snapshot(),
            "token_allowance": self.allowance.snapshot(),
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        if not snapshot:
            return
        try:
            self.frequency.restore(snapshot.get("frequency") or {})
            self.allowance.restore(snapshot.get("token_allowance") or {})
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed rate-limit snapshot: {e}")
            self.frequency.restore({})
            self.allowance.restore({})


class RateLimitStore:
    """Flat JSON snapshot file. Writes are atomic (temp file + rename)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info(f"No rate-limit snapshot at {self.path}; starting empty")
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read rate-limit snapshot {self.path}: {e}; starting empty")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Rate-limit snapshot {self.path} is not an object; starting empty")
            return {}
        return data

    def _write(self, snapshot: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".rate_limits.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(snapshot, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def save(self, snapshot: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, snapshot)


class SnapshotFlusher:
    """Periodically persists the limiter state, and once more on stop."""

    def __init__(self, limiter: RateLimiter, store: RateLimitStore, interval_seconds: float = 30.0):
        self.limiter = limiter
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def flush(self) -> None:
        # Snapshot is taken on the loop; only the write runs in a thread
        snapshot = self.limiter.snapshot()
        try:
            await self.store.save(snapshot)
        except OSError as e:
            logger.warning(f"Rate-limit snapshot flush failed: {e}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.flush()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()
