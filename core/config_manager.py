import json
import logging
import os
from pathlib import Path
from typing import Dict, Any

from core.proxy.settings import (
    DEFAULT_FORWARD_HEADERS,
    DEFAULT_STRIP_HEADERS,
    DEFAULT_USER_AGENT,
)

logger = logging.getLogger(__name__)

DATA_DIR_ENV = 'WEBRELAY_DATA_DIR'


def get_app_data_dir() -> Path:
    """Возвращает путь для хранения данных приложения (конфиг, логи)"""
    override = os.getenv(DATA_DIR_ENV)
    if override:
        app_data_dir = Path(override)
    else:
        app_data_dir = Path.home() / '.config' / 'webrelay'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Path = None):
        self.config_path = config_path or self._get_config_path()
        self.config = self._load_config()
        self._apply_env_overrides()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'server': {
                'host': '0.0.0.0',
                'port': 3000,
                'public_url': None,  # Внешний адрес, если прокси за reverse proxy
                'trust_forwarded_headers': False,
                'handler_cancellation': False,
                'debug': False,
            },

            'proxy': {
                'timeout': 30,
                'max_response_size': 10 * 1024 * 1024,  # 10MB
                'user_agent': DEFAULT_USER_AGENT,
                'forward_headers': list(DEFAULT_FORWARD_HEADERS),
                'strip_headers': list(DEFAULT_STRIP_HEADERS),
                'connection_limit': 100,
            },

            'logging': {
                'level': 'INFO',
                'max_bytes': 5 * 1024 * 1024,
                'backup_count': 5,
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        if not self.config_path.exists():
            return default_config

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Ошибка загрузки конфига {self.config_path}: {e}")
            return default_config

        if not isinstance(loaded_config, dict):
            logger.error(f"Конфиг {self.config_path} должен быть JSON объектом, используются значения по умолчанию")
            return default_config

        # Объединяем с дефолтными значениями
        return self._deep_merge(default_config, loaded_config)

    def _apply_env_overrides(self):
        """PORT и WEBRELAY_DEBUG из окружения важнее файла"""
        port = os.getenv('PORT')
        if port:
            try:
                self.set('server.port', int(port))
            except ValueError:
                logger.warning(f"⚠️ Некорректный PORT={port!r}, используется {self.get('server.port')}")

        debug = os.getenv('WEBRELAY_DEBUG')
        if debug:
            self.set('server.debug', debug.lower() in ('1', 'true', 'yes', 'on'))

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
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
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Конфигурация сохранена")
            return True
        except OSError as e:
            logger.error(f"Ошибка сохранения конфига: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Устанавливает значение по ключу (dot notation)"""
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

    def get_server_config(self) -> Dict[str, Any]:
        """Возвращает настройки сервера"""
        return self.get('server', {})

    def get_proxy_config(self) -> Dict[str, Any]:
        """Возвращает настройки прокси"""
        return self.get('proxy', {})

    def reset_to_defaults(self) -> bool:
        """Сбрасывает настройки к значениям по умолчанию"""
        self.config = self._get_default_config()
        return self.save()


# Синглтон для глобального доступа
_config_instance = None


def get_config() -> ConfigManager:
    """Возвращает глобальный экземпляр ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance
