from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict, List
import yaml

from modguard.datatypes.check_config import CheckConfig, params_from_dict
from modguard.datatypes.detection_datatypes import CheckName, DetectionPolicy
from modguard.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path(os.getenv("MODGUARD_CONFIG", "./config/app_config.yml")).resolve()


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name, {})
    return value if isinstance(value, dict) else {}


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    Caches the contents of ``config/app_config.yml`` and exposes typed
    properties for every tunable. Per-community detection settings are not read
    from here at evaluation time; this file only seeds the global level of the
    database and sizes the runtime components.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                # Shared lock so an editor writing the file cannot hand us half a document
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file, replace the cache and return the new mapping.

        An unreadable file yields an empty mapping, so every property falls back
        to its default.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # Database
    # --------------------------
    @property
    def database_path(self) -> Path:
        value = _section(self._data, "database").get("path", "./data/modguard.db")
        return Path(value).resolve()

    # --------------------------
    # Detection
    # --------------------------
    @property
    def detection_policy(self) -> DetectionPolicy:
        """Global detection policy used to seed the database on first start."""
        return DetectionPolicy.from_dict(_section(self._data, "detection"))

    @property
    def detection_deadline(self) -> float:
        return float(_section(self._data, "detection").get("evaluation_deadline_seconds", 10.0))

    @property
    def detection_concurrency(self) -> int:
        return int(_section(self._data, "detection").get("max_concurrent_checks", 8))

    @property
    def default_check_configs(self) -> Dict[CheckName, CheckConfig]:
        """Global per-check records described under ``checks:``.

        Unknown check names are logged and skipped.
        """
        configs: Dict[CheckName, CheckConfig] = {}
        for name, raw in _section(self._data, "checks").items():
            try:
                check = CheckName(name)
            except ValueError:
                logger.warning("[APP CONFIGURATION] Unknown check %r in config, skipping", name)
                continue
            if check is CheckName.MANUAL or not isinstance(raw, dict):
                continue
            configs[check] = CheckConfig(
                check=check,
                enabled=bool(raw.get("enabled", True)),
                confidence_threshold=int(raw.get("confidence_threshold", 0)),
                always_run=bool(raw.get("always_run", False)),
                timeout=float(raw.get("timeout_seconds", 5.0)),
                params=params_from_dict(check, raw.get("params")),
            )
        return configs

    # --------------------------
    # Orchestration
    # --------------------------
    @property
    def enforcement_call_timeout(self) -> float:
        return float(_section(self._data, "orchestration").get("call_timeout_seconds", 10.0))

    @property
    def enforcement_deadline(self) -> float:
        return float(_section(self._data, "orchestration").get("deadline_seconds", 60.0))

    @property
    def enforcement_concurrency(self) -> int:
        return int(_section(self._data, "orchestration").get("max_concurrent_communities", 5))

    # --------------------------
    # Expiry reconciler
    # --------------------------
    @property
    def reconciler_interval(self) -> float:
        """Seconds between expiry sweeps. Default is 30 seconds."""
        return float(_section(self._data, "reconciler").get("interval_seconds", 30.0))

    @property
    def reconciler_claim_timeout(self) -> float:
        """Seconds after which an unfinished claim may be taken over."""
        return float(_section(self._data, "reconciler").get("claim_timeout_seconds", 300.0))

    # --------------------------
    # Training corpus
    # --------------------------
    @property
    def training_max_automatic(self) -> int:
        return int(_section(self._data, "training").get("max_automatic_samples", 500))

    @property
    def similarity_refresh_seconds(self) -> float:
        return float(_section(self._data, "training").get("similarity_refresh_seconds", 300.0))

    # --------------------------
    # Notifications and maintenance
    # --------------------------
    @property
    def admin_channel_ids(self) -> List[int]:
        values = _section(self._data, "notifications").get("admin_channel_ids", []) or []
        return [int(v) for v in values]

    @property
    def retention_days(self) -> int:
        return int(_section(self._data, "maintenance").get("retention_days", 90))

    @property
    def maintenance_interval(self) -> float:
        return float(_section(self._data, "maintenance").get("interval_seconds", 86400.0))


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
