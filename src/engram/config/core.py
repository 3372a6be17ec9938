import os
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".engram"


class Core:
    def __init__(self, config: dict | None = None) -> None:
        core_cfg = (config or {}).get("engram", {}).get("core", {})
        self.DATA_DIR: str = str(core_cfg.get("data_dir", os.getenv("ENGRAM_DATA_DIR", str(_DEFAULT_DATA_DIR))))
        self.DB_PATH: str = str(
            core_cfg.get("db_path", os.getenv("ENGRAM_DB_PATH", str(Path(self.DATA_DIR) / "engram.db")))
        )
        self.PROJECT: str = str(core_cfg.get("project", os.getenv("ENGRAM_PROJECT", "default")))
