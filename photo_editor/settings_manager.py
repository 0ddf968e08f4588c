from __future__ import annotations

import json
import os
from typing import Any

from .logger import get_logger

_logger = get_logger("settings")


class SettingsManager:
    def __init__(self, settings_path: str):
        self.settings_path = settings_path
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "max_bitmap_dim": 900,
        "small_bitmap_dim": 160,
        "backoff_attempts": 5,
        "background_resource": "filtershow_background.png",
        "default_compress_quality": 95,
        "default_save_directory": "EditedOnlinePhotos",
        "jpeg_mime_type": "image/jpeg",
    }

    def load(self) -> None:
        try:
            if os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
        except (OSError, ValueError) as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        try:
            parent = os.path.dirname(self.settings_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except OSError as e:
            _logger.error("settings save failed: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    def _positive_int(self, key: str) -> int:
        fallback = int(self.DEFAULTS[key])
        try:
            value = int(self.get(key))
        except (TypeError, ValueError):
            _logger.warning("setting %s is not an integer, using %s", key, fallback)
            return fallback
        if value < 1:
            _logger.warning("setting %s must be positive, using %s", key, fallback)
            return fallback
        return value

    @property
    def max_bitmap_dim(self) -> int:
        return self._positive_int("max_bitmap_dim")

    @property
    def small_bitmap_dim(self) -> int:
        return self._positive_int("small_bitmap_dim")

    @property
    def backoff_attempts(self) -> int:
        return self._positive_int("backoff_attempts")

    @property
    def background_resource(self) -> str:
        return str(self.get("background_resource"))

    @property
    def default_compress_quality(self) -> int:
        quality = self._positive_int("default_compress_quality")
        return min(quality, 100)

    @property
    def default_save_directory(self) -> str:
        return str(self.get("default_save_directory"))

    @property
    def jpeg_mime_type(self) -> str:
        return str(self.get("jpeg_mime_type"))
