import os

from scriptvault import __version__


class Fetch:
    def __init__(self, config: dict | None = None) -> None:
        fetch_cfg = (config or {}).get("scriptvault", {}).get("fetch", {})
        self.REQUEST_TIMEOUT: float = float(
            fetch_cfg.get("request_timeout", os.getenv("FETCH_TIMEOUT", "30"))
        )
        self.MAX_RESOURCE_MB: int = int(
            fetch_cfg.get("max_resource_mb", os.getenv("MAX_RESOURCE_MB", "10"))
        )
        self.USER_AGENT: str = str(
            fetch_cfg.get("user_agent", os.getenv("FETCH_USER_AGENT", f"scriptvault/{__version__}"))
        )
