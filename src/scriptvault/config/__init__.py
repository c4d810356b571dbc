"""Application configuration"""

import logging
from dotenv import load_dotenv

from .loader import load_raw_config
from .storage import Storage
from .fetch import Fetch
from .matching import Matching

load_dotenv()

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(format=LOG_FORMAT, datefmt=DATE_FORMAT, level=logging.INFO)
logging.getLogger("aiohttp").setLevel(logging.WARNING)
logging.getLogger("PIL").setLevel(logging.WARNING)

_RAW_CONFIG = load_raw_config()

storage = Storage(_RAW_CONFIG)
fetch = Fetch(_RAW_CONFIG)
matching = Matching(_RAW_CONFIG)


class Config:
    storage = storage
    fetch = fetch
    matching = matching


__all__ = ["storage", "fetch", "matching", "Config", "load_raw_config"]
