from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict


DEFAULT_CONFIG_PATH = Path("config.toml")
CONFIG_ENV = "ENGRAM_CONFIG"


def load_raw_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Read the TOML config file into a dict.

    Lookup order: ``path``, then ``$ENGRAM_CONFIG``, then ``./config.toml``.
    A missing file yields ``{}`` and every section falls back to environment
    variables. Engram's keys live under ``[engram.<section>]``.
    """
    if path is None:
        path = os.getenv(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    target = Path(path)
    if not target.is_file():
        return {}

    with target.open("rb") as handle:
        return tomllib.load(handle)


__all__ = ["load_raw_config", "DEFAULT_CONFIG_PATH", "CONFIG_ENV"]
