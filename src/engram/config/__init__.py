"""Application configuration"""

import logging
from dotenv import load_dotenv

from .loader import load_raw_config
from .core import Core
from .embedding import Embedding
from .vector import Vector
from .search import Search

load_dotenv()

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(format=LOG_FORMAT, datefmt=DATE_FORMAT, level=logging.INFO)
logging.getLogger("httpx").setLevel(logging.WARNING)

_RAW_CONFIG = load_raw_config()

core = Core(_RAW_CONFIG)
embedding = Embedding(_RAW_CONFIG)
vector = Vector(_RAW_CONFIG)
search = Search(_RAW_CONFIG)


class Config:
    core = core
    embedding = embedding
    vector = vector
    search = search


__all__ = ["core", "embedding", "vector", "search", "Config", "load_raw_config"]
