import os


class Search:
    def __init__(self, config: dict | None = None) -> None:
        search_cfg = (config or {}).get("engram", {}).get("search", {})
        self.VECTOR_WEIGHT: float = float(search_cfg.get("vector_weight", os.getenv("ENGRAM_VECTOR_WEIGHT", "0.7")))
        self.TEXT_WEIGHT: float = float(search_cfg.get("text_weight", os.getenv("ENGRAM_TEXT_WEIGHT", "0.3")))
        self.CANDIDATE_MULTIPLIER: int = int(
            search_cfg.get("candidate_multiplier", os.getenv("ENGRAM_CANDIDATE_MULTIPLIER", "4"))
        )
        self.INDEX_CHUNK_SIZE: int = int(search_cfg.get("index_chunk_size", os.getenv("ENGRAM_INDEX_CHUNK_SIZE", "100")))
        self.PREVIEW_CHARS: int = int(search_cfg.get("preview_chars", os.getenv("ENGRAM_PREVIEW_CHARS", "200")))
        self.INDEX_CONCURRENCY: int = int(
            search_cfg.get("index_concurrency", os.getenv("ENGRAM_INDEX_CONCURRENCY", "2"))
        )
        self.SYNC_INTERVAL: int = int(search_cfg.get("sync_interval", os.getenv("ENGRAM_SYNC_INTERVAL", "3600")))
