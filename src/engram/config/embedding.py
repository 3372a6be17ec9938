import os
from pathlib import Path

_DEFAULT_MODEL_DIR = Path.home() / ".engram" / "models"

_DEFAULT_MODELS = {
    "local": "all-MiniLM-L6-v2",
    "openai": "text-embedding-3-small",
    "ollama": "nomic-embed-text",
}


class Embedding:
    def __init__(self, config: dict | None = None) -> None:
        emb_cfg = (config or {}).get("engram", {}).get("embedding", {})
        self.PROVIDER: str = str(
            emb_cfg.get("provider", os.getenv("ENGRAM_EMBEDDING_PROVIDER", "none"))
        ).strip().lower()
        self.MODEL: str = str(
            emb_cfg.get("model")
            or os.getenv("ENGRAM_EMBEDDING_MODEL")
            or _DEFAULT_MODELS.get(self.PROVIDER, "")
        )
        self.API_KEY: str | None = (
            emb_cfg.get("api_key") or os.getenv("ENGRAM_EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY")
        )
        self.BASE_URL: str | None = emb_cfg.get("base_url") or os.getenv("ENGRAM_EMBEDDING_BASE_URL")
        self.OLLAMA_HOST: str = str(emb_cfg.get("ollama_host", os.getenv("OLLAMA_HOST", "http://localhost:11434")))
        self.MODEL_DIR: str = str(emb_cfg.get("model_dir", os.getenv("ENGRAM_MODEL_DIR", str(_DEFAULT_MODEL_DIR))))
        self.TIMEOUT: float = float(emb_cfg.get("timeout", os.getenv("ENGRAM_EMBEDDING_TIMEOUT", "60")))
