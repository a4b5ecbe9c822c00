"""Stable app-scoped device id, persisted in a small key/value store.

Not a hardware identifier: a random id generated on first run and reused for
every session and ping afterwards.
"""

import json
import os
import secrets
import string
import time

DEVICE_ID_KEY = "device_id"

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_ALPHABET[r])
    return "".join(reversed(digits))


def new_device_id(now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(8))
    return f"dev_{_base36(now_ms)}_{suffix}"


class JsonFileStore:
    """Key/value strings in a JSON file, rewritten atomically on each put."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str):
        return self._load().get(key)

    def put(self, key: str, value: str):
        data = self._load()
        data[key] = value
        tmp = self.path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)


def get_or_create_device_id(store) -> str:
    existing = store.get(DEVICE_ID_KEY)
    if existing and existing.strip():
        return existing.strip()
    created = new_device_id()
    store.put(DEVICE_ID_KEY, created)
    return created
