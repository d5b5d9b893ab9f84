"""Shared mutable firewall state.

Two backends behind one interface: an in-process map (lost on restart)
and Redis (survives restarts and is shared between processes). Every
read-modify-write is atomic per key in both.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import redis

Key = tuple[str, str]


@dataclass
class RateWindow:
    """Reset-on-expiry counting window."""

    count: int
    reset_at: float


@dataclass
class FailedAttempts:
    count: int
    last_attempt_at: float


class FirewallState(ABC):
    """Storage for blocked IPs, rate windows, failed attempts, suspicion counters
    and the emergency lockdown flag.
    """

    @abstractmethod
    def is_blocked(self, ip: str) -> bool:
        pass

    @abstractmethod
    def add_blocked(self, ip: str) -> bool:
        """Add ip. Returns True if it was not blocked before."""
        pass

    @abstractmethod
    def blocked_count(self) -> int:
        pass

    @abstractmethod
    def hit_window(self, key: Key, now: float, window: float, limit: Optional[int]) -> tuple[bool, int]:
        """Count one hit in the key's window.

        Starts a new window with count 1 when none exists or ``now`` is past
        its reset time. Otherwise rejects without counting once ``limit``
        hits are in the window. Returns (allowed, count).
        """
        pass

    @abstractmethod
    def window_count(self, key: Key, now: float) -> int:
        """Hits in the key's current window (0 if expired)."""
        pass

    @abstractmethod
    def increment_failed(self, key: Key, now: float) -> int:
        pass

    @abstractmethod
    def clear_failed(self, key: Key) -> None:
        pass

    @abstractmethod
    def failed_count(self, key: Key) -> int:
        pass

    @abstractmethod
    def increment_suspicious(self, key: Key) -> int:
        pass

    @abstractmethod
    def suspicious_count(self, key: Key) -> int:
        pass

    @abstractmethod
    def suspicious_items(self) -> list[tuple[Key, int]]:
        pass

    @abstractmethod
    def sweep(self, now: float, failed_ttl: float) -> tuple[int, int]:
        """Drop expired windows and stale failed attempts. Returns (windows, failed)."""
        pass

    @abstractmethod
    def lockdown_reason(self) -> Optional[str]:
        """Reason of the active emergency lockdown, or None."""
        pass

    @abstractmethod
    def set_lockdown(self, reason: str) -> None:
        pass

    @abstractmethod
    def clear_lockdown(self) -> Optional[str]:
        """End the lockdown. Returns its reason, or None if none was active."""
        pass


class InMemoryFirewallState(FirewallState):
    """Process-local state. Forgotten on restart."""

    def __init__(self):
        self._lock = threading.Lock()
        self._blocked: set[str] = set()
        self._windows: dict[Key, RateWindow] = {}
        self._failed: dict[Key, FailedAttempts] = {}
        self._suspicious: dict[Key, int] = {}
        self._lockdown: Optional[str] = None

    def is_blocked(self, ip: str) -> bool:
        return ip in self._blocked

    def add_blocked(self, ip: str) -> bool:
        with self._lock:
            if ip in self._blocked:
                return False
            self._blocked.add(ip)
            return True

    def blocked_count(self) -> int:
        return len(self._blocked)

    def hit_window(self, key: Key, now: float, window: float, limit: Optional[int]) -> tuple[bool, int]:
        with self._lock:
            current = self._windows.get(key)
            if current is None or now > current.reset_at:
                self._windows[key] = RateWindow(count=1, reset_at=now + window)
                return True, 1
            if limit is not None and current.count >= limit:
                return False, current.count
            current.count += 1
            return True, current.count

    def window_count(self, key: Key, now: float) -> int:
        with self._lock:
            current = self._windows.get(key)
            if current is None or now > current.reset_at:
                return 0
            return current.count

    def increment_failed(self, key: Key, now: float) -> int:
        with self._lock:
            current = self._failed.get(key)
            count = current.count + 1 if current else 1
            self._failed[key] = FailedAttempts(count=count, last_attempt_at=now)
            return count

    def clear_failed(self, key: Key) -> None:
        with self._lock:
            self._failed.pop(key, None)

    def failed_count(self, key: Key) -> int:
        with self._lock:
            current = self._failed.get(key)
            return current.count if current else 0

    def increment_suspicious(self, key: Key) -> int:
        with self._lock:
            count = self._suspicious.get(key, 0) + 1
            self._suspicious[key] = count
            return count

    def suspicious_count(self, key: Key) -> int:
        with self._lock:
            return self._suspicious.get(key, 0)

    def suspicious_items(self) -> list[tuple[Key, int]]:
        with self._lock:
            return list(self._suspicious.items())

    def sweep(self, now: float, failed_ttl: float) -> tuple[int, int]:
        with self._lock:
            expired = [k for k, w in self._windows.items() if now > w.reset_at]
            for k in expired:
                del self._windows[k]
            stale = [k for k, f in self._failed.items() if f.last_attempt_at < now - failed_ttl]
            for k in stale:
                del self._failed[k]
            return len(expired), len(stale)

    def lockdown_reason(self) -> Optional[str]:
        return self._lockdown

    def set_lockdown(self, reason: str) -> None:
        with self._lock:
            self._lockdown = reason

    def clear_lockdown(self) -> Optional[str]:
        with self._lock:
            reason, self._lockdown = self._lockdown, None
            return reason


class RedisFirewallState(FirewallState):
    """Redis-backed state. Expiry is delegated to key TTLs.

    ``now`` arguments are ignored: windows run on the Redis server clock.
    """

    def __init__(self, client: redis.Redis, prefix: str = "snapsecure:fw", failed_ttl: int = 3600):
        self.client = client
        self.prefix = prefix
        self.failed_ttl = failed_ttl

    def _key(self, kind: str, key: Key) -> str:
        return f"{self.prefix}:{kind}:{key[0]}:{key[1]}"

    @property
    def _blocked_key(self) -> str:
        return f"{self.prefix}:blocked"

    def is_blocked(self, ip: str) -> bool:
        return bool(self.client.sismember(self._blocked_key, ip))

    def add_blocked(self, ip: str) -> bool:
        return self.client.sadd(self._blocked_key, ip) == 1

    def blocked_count(self) -> int:
        return int(self.client.scard(self._blocked_key))

    def hit_window(self, key: Key, now: float, window: float, limit: Optional[int]) -> tuple[bool, int]:
        name = self._key("rate", key)
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(name)
        pipe.pexpire(name, int(window * 1000), nx=True)
        count, _ = pipe.execute()
        count = int(count)
        if limit is not None and count > limit:
            # Denied hits are not counted
            self.client.decr(name)
            return False, limit
        return True, count

    def window_count(self, key: Key, now: float) -> int:
        value = self.client.get(self._key("rate", key))
        return int(value) if value is not None else 0

    def increment_failed(self, key: Key, now: float) -> int:
        name = self._key("failed", key)
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(name)
        pipe.expire(name, self.failed_ttl)
        count, _ = pipe.execute()
        return int(count)

    def clear_failed(self, key: Key) -> None:
        self.client.delete(self._key("failed", key))

    def failed_count(self, key: Key) -> int:
        value = self.client.get(self._key("failed", key))
        return int(value) if value is not None else 0

    def increment_suspicious(self, key: Key) -> int:
        return int(self.client.incr(self._key("suspicious", key)))

    def suspicious_count(self, key: Key) -> int:
        value = self.client.get(self._key("suspicious", key))
        return int(value) if value is not None else 0

    def suspicious_items(self) -> list[tuple[Key, int]]:
        items = []
        marker = f"{self.prefix}:suspicious:"
        for name in self.client.scan_iter(match=f"{marker}*"):
            if isinstance(name, bytes):
                name = name.decode()
            subject, _, activity = name[len(marker):].rpartition(":")
            value = self.client.get(name)
            if value is not None:
                items.append(((subject, activity), int(value)))
        return items

    def sweep(self, now: float, failed_ttl: float) -> tuple[int, int]:
        return 0, 0

    @property
    def _lockdown_key(self) -> str:
        return f"{self.prefix}:lockdown"

    def lockdown_reason(self) -> Optional[str]:
        value = self.client.get(self._lockdown_key)
        if isinstance(value, bytes):
            value = value.decode()
        return value

    def set_lockdown(self, reason: str) -> None:
        self.client.set(self._lockdown_key, reason)

    def clear_lockdown(self) -> Optional[str]:
        pipe = self.client.pipeline(transaction=True)
        pipe.get(self._lockdown_key)
        pipe.delete(self._lockdown_key)
        value, _ = pipe.execute()
        if isinstance(value, bytes):
            value = value.decode()
        return value
