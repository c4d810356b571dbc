import os
from typing import List


def _split_rules(raw: str) -> List[str]:
    return [rule.strip() for rule in raw.split(",") if rule.strip()]


class Matching:
    def __init__(self, config: dict | None = None) -> None:
        matching_cfg = (config or {}).get("scriptvault", {}).get("matching", {})
        rules_cfg = matching_cfg.get("blacklist")
        if rules_cfg:
            self.BLACKLIST: List[str] = [str(rule) for rule in rules_cfg]
        else:
            self.BLACKLIST = _split_rules(os.getenv("BLACKLIST", ""))
