# load_monitor/config.py

import os
import yaml

SETTINGS_PATH = os.getenv(
    "LOAD_MONITOR_SETTINGS",
    os.path.join(os.path.dirname(__file__), "config/settings.yaml"),
)


class Config:
    def __init__(self, path: str = SETTINGS_PATH):
        with open(path, "r", encoding="utf-8") as f:
            self._raw = yaml.safe_load(f) or {}

        # Read server section
        server = self._raw.get("server", {})
        self.server_name = server.get("name", "oracle_load_monitor")
        self.server_port = server.get("port", 8300)

        # Sampling section
        sampling = self._raw.get("sampling", {})
        self.min_duration_sec = int(sampling.get("min_duration_sec", 5))
        self.top_offenders = int(sampling.get("top_offenders", 5))
        self.default_num_cpus = int(sampling.get("default_num_cpus", 1))
        self.refresh_interval_sec = int(sampling.get("refresh_interval_sec", 5))

        # Database presets
        self.database_presets = self._raw.get("database_presets", {}) or {}

    def get_db_preset(self, name):
        if name not in self.database_presets:
            raise KeyError(f"DB preset '{name}' is not defined in settings.yaml")
        return self.database_presets[name]


config = Config()
