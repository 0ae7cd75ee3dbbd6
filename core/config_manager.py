import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_URL = "https://api.holded.com/api/team/v1"


def get_app_data_dir() -> Path:
    """Returns the directory holding config.json and logs/"""
    custom_dir = os.getenv('HOLDED_RELAY_HOME')
    if custom_dir:
        app_data_dir = Path(custom_dir)
    else:
        # Dev mode
        app_data_dir = Path(__file__).parent.parent / 'app_data'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self._get_config_path()
        self.config = self._load_config()

    def _get_config_path(self) -> Path:
        """Returns the path of the configuration file"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Returns the default configuration"""
        return {
            'relay': {
                'host': '127.0.0.1',
                'port': 8787,
            },

            'upstream': {
                'base_url': DEFAULT_UPSTREAM_URL,
                'per_page': 50,  # Holded maximum
                'max_pages': 200,
                'timeout': 30,  # seconds, per upstream call
                'connect_timeout': 10,
                'request_deadline': 120,  # seconds, whole inbound request
            },

            'client': {
                'relay_url': 'http://127.0.0.1:8787',
                'timeout': 60,
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Loads the configuration file merged over the defaults"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load config {self.config_path}: {e}")

        return default_config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Recursive dictionary merge"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Writes the configuration to disk"""
        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Configuration saved")
            return True
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Gets a value by dotted key, e.g. 'upstream.base_url'"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Sets a value by dotted key"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True

    def get_relay_config(self) -> Dict[str, Any]:
        """Returns the bind settings of the relay server"""
        return self.get('relay', {})

    def get_upstream_config(self) -> Dict[str, Any]:
        """Returns the upstream (Holded API) settings"""
        return self.get('upstream', {})

    def get_client_config(self) -> Dict[str, Any]:
        """Returns the relay client settings"""
        return self.get('client', {})


# Singleton for global access
_config_instance = None


def get_config() -> ConfigManager:
    """Returns the global ConfigManager instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance
