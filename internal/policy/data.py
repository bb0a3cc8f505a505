import os

import yaml

from internal.models.config import TopologyConfig
from internal.models.errors import InvalidTopologyConfig


class TopologyStore:
    def __init__(self, path: str | None = None):
        self.path = path or os.environ.get("TOPOLOGY_CONFIG_PATH", "config/topology.yaml")
        self._cache = None

    def load(self) -> dict:
        if self._cache is None:
            with open(self.path, "r", encoding="utf-8") as f:
                try:
                    self._cache = yaml.safe_load(f) or {}
                except yaml.YAMLError as exc:
                    raise InvalidTopologyConfig([f"{self.path}: {exc}"]) from exc
        return self._cache

    def reload(self) -> dict:
        self._cache = None
        return self.load()

    def config(self) -> TopologyConfig:
        return TopologyConfig.from_dict(self.load())


topology_store = TopologyStore()
