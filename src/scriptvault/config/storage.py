import os
from pathlib import Path

_DEFAULT_DATA_FILE = Path("data") / "store.json.gz"


class Storage:
    def __init__(self, config: dict | None = None) -> None:
        storage_cfg = (config or {}).get("scriptvault", {}).get("storage", {})
        self.DATA_FILE: str = str(
            storage_cfg.get("data_file", os.getenv("SCRIPTVAULT_DATA_FILE", str(_DEFAULT_DATA_FILE)))
        )
        self.VACUUM_INTERVAL: int = int(
            storage_cfg.get("vacuum_interval", os.getenv("VACUUM_INTERVAL", "86400"))
        )
