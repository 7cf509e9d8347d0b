"""config.json-backed store for the live classification settings.

Only the ``classification`` block is owned here; the rest of config.json is
read once at startup by ``settings``. ``set`` rewrites the file atomically and
notifies subscribers, so a change applies to the next message processed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from typing import Callable, List, Optional

from core.config import (
    ClassificationConfig,
    build_classification_config,
    dump_classification_config,
)

LOGGER = logging.getLogger(__name__)

SECTION = "classification"

Subscriber = Callable[[ClassificationConfig], None]


class JsonConfigStore:
    """ConfigStorePort implementation over the shared config.json file."""

    def __init__(self, path: str, env_credential: Optional[str] = None) -> None:
        self._path = path
        self._env_credential = env_credential or ""
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._config = self._load()

    def _read_document(self) -> dict:
        if not os.path.exists(self._path):
            return {}
        with open(self._path, "r", encoding="utf-8") as handle:
            return json.load(handle)

    def _load(self) -> ClassificationConfig:
        raw = dict(self._read_document().get(SECTION, {}) or {})
        # A credential in the file takes precedence over AI_API_KEY.
        if not raw.get("ai_credential") and self._env_credential:
            raw["ai_credential"] = self._env_credential
        return build_classification_config(raw)

    def get(self) -> ClassificationConfig:
        with self._lock:
            return self._config

    def reload(self) -> ClassificationConfig:
        """Re-read config.json after an out-of-band edit."""

        config = self._load()
        self._publish(config)
        return config

    def set(self, config: ClassificationConfig) -> None:
        document = self._read_document()
        keep_credential = bool(config.ai_credential) and config.ai_credential != self._env_credential
        document[SECTION] = dump_classification_config(config, include_credential=keep_credential)

        directory = os.path.dirname(os.path.abspath(self._path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".config-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        self._publish(config)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change callback; returns a function that unsubscribes."""

        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, config: ClassificationConfig) -> None:
        with self._lock:
            self._config = config
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(config)
            except Exception:
                LOGGER.exception("Config subscriber %r failed", callback)
