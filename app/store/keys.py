from __future__ import annotations

import secrets
import time

# Lexicographic order of the alphabet matches numeric order, so push ids sort by creation time.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_last_ts = 0
_last_rand: list[int] = []


def make_push_id(now_ms: int | None = None) -> str:
    """20-char time-ordered key (8 chars of timestamp + 12 chars of randomness)."""
    global _last_ts, _last_rand
    ts = int(now_ms if now_ms is not None else time.time() * 1000)
    same_ms = ts == _last_ts
    _last_ts = ts

    head = []
    t = ts
    for _ in range(8):
        head.append(PUSH_CHARS[t % 64])
        t //= 64
    head.reverse()

    if same_ms and _last_rand:
        # increment the random part so ids created within one ms stay ordered
        i = 11
        while i >= 0 and _last_rand[i] == 63:
            _last_rand[i] = 0
            i -= 1
        if i >= 0:
            _last_rand[i] += 1
    else:
        _last_rand = [secrets.randbelow(64) for _ in range(12)]

    return "".join(head) + "".join(PUSH_CHARS[r] for r in _last_rand)
