import os


class Vector:
    def __init__(self, config: dict | None = None) -> None:
        vec_cfg = (config or {}).get("engram", {}).get("vector", {})
        self.BACKEND: str = str(vec_cfg.get("backend", os.getenv("ENGRAM_VECTOR_STORE", "sqlite"))).strip().lower()
        self.SQLITE_PATH: str | None = vec_cfg.get("sqlite_path") or os.getenv("ENGRAM_VECTOR_DB_PATH")
        self.QDRANT_URL: str = str(vec_cfg.get("qdrant_url", os.getenv("QDRANT_URL", "http://localhost:6333")))
        self.QDRANT_API_KEY: str | None = vec_cfg.get("qdrant_api_key") or os.getenv("QDRANT_API_KEY")
        self.MILVUS_HOST: str = str(vec_cfg.get("milvus_host", os.getenv("MILVUS_HOST", "127.0.0.1")))
        self.MILVUS_PORT: str = str(vec_cfg.get("milvus_port", os.getenv("MILVUS_PORT", "19530")))
        self.TIMEOUT: float = float(vec_cfg.get("timeout", os.getenv("ENGRAM_VECTOR_TIMEOUT", "30")))
