"""进程内权限缓存（带 TTL）

只缓存角色派生的权限集合；覆盖项与组织单元每次实时读取。
不做主动失效，条目到期自然淘汰，TTL 窗口内的陈旧是可接受的一致性取舍。
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple


DEFAULT_TTL_SECONDS = 60.0


class PermissionsCache:
    """基于字典 + 互斥锁的单进程 TTL 缓存"""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[FrozenSet[str], float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + ttl_seconds

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, user_id: str) -> Optional[FrozenSet[str]]:
        """命中返回权限集合；缺失或过期返回 None（过期条目顺带删除）"""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            perms, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[user_id]
                return None
            return perms

    def set(self, user_id: str, permissions: Iterable[str]) -> None:
        with self._lock:
            now = self._clock()
            # 每个 TTL 周期至多清扫一次，从未再读取的用户条目不会无限累积
            if now >= self._next_sweep:
                expired = [uid for uid, (_, expires_at) in self._entries.items() if now > expires_at]
                for uid in expired:
                    del self._entries[uid]
                self._next_sweep = now + self._ttl
            self._entries[user_id] = (frozenset(permissions), now + self._ttl)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
