"""
Helpers for the JSON tree a document store exposes.

Empty dicts are pruned, mirroring how the Realtime Database never stores
empty nodes.
"""

import random
import string
import threading
import time
from typing import Any, Optional


def split_path(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def get_at(root: Any, parts: list[str]) -> Any:
    node = root
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def set_at(root: Any, parts: list[str], value: Any) -> Optional[Any]:
    """Set ``value`` at ``parts`` below ``root`` and return the new root."""
    if not parts:
        return value
    node = root if isinstance(root, dict) else {}
    head, rest = parts[0], parts[1:]
    child = set_at(node.get(head), rest, value)
    if child is None or child == {}:
        node.pop(head, None)
    else:
        node[head] = child
    return node or None


def is_related(a: list[str], b: list[str]) -> bool:
    """True when one path is an ancestor of (or equal to) the other."""
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]


# Same alphabet as the Realtime Database so keys sort chronologically
_PUSH_CHARS = "-0123456789" + string.ascii_uppercase + "_" + string.ascii_lowercase


class PushIdGenerator:
    """
    Generates 20-character, time-ordered, collision-resistant keys.

    8 characters encode the millisecond timestamp, 12 are random. Keys
    made within the same millisecond increment the random part so they
    still sort in creation order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_time = 0
        self._last_random = [0] * 12
        self._random = random.SystemRandom()

    def __call__(self) -> str:
        with self._lock:
            now = int(time.time() * 1000)
            duplicate = now == self._last_time
            self._last_time = now

            time_chars = []
            for _ in range(8):
                time_chars.append(_PUSH_CHARS[now % 64])
                now //= 64
            key = "".join(reversed(time_chars))

            if not duplicate:
                self._last_random = [self._random.randrange(64) for _ in range(12)]
            else:
                i = 11
                while i >= 0 and self._last_random[i] == 63:
                    self._last_random[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_random[i] += 1

            return key + "".join(_PUSH_CHARS[i] for i in self._last_random)


generate_push_id = PushIdGenerator()
