from __future__ import annotations

import os

from .base import AppSettings
from .local import LocalSettings
from .stage import StageSettings
from .prod import ProdSettings
from .dev import DevSettings
from .test import TestSettings


# MODE wins over APP_ENV; neither set means a developer machine
MODE = (os.environ.get("MODE") or os.environ.get("APP_ENV") or "local").lower()

_MAPPING: dict[str, type[AppSettings]] = {
    "local": LocalSettings,
    "dev": DevSettings,
    "test": TestSettings,
    "stage": StageSettings,
    "staging": StageSettings,
    "prod": ProdSettings,
    "production": ProdSettings,
}


def _choose_settings_class(mode: str) -> type[AppSettings]:
    """
    Unknown modes are an error rather than a silent fallback to local
    settings, which carry development signing keys.
    """
    try:
        return _MAPPING[mode]
    except KeyError:
        known = ", ".join(sorted(_MAPPING))
        raise RuntimeError(f"Unknown MODE '{mode}'. Expected one of: {known}") from None


SettingsClass = _choose_settings_class(MODE)
settings = SettingsClass()

__all__ = ["settings", "SettingsClass", "AppSettings", "MODE"]
