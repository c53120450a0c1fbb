import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Union

from core.proxy.cache_manager import DEFAULT_TTL_SECONDS
from core.proxy.upstream_resolver import DEFAULT_UPSTREAMS

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_app_data_dir() -> Path:
    """Возвращает путь для хранения данных приложения (логи, сертификаты, конфиг)"""
    env_dir = os.getenv('INTERSTELLAR_HOME')
    if env_dir:
        app_data_dir = Path(env_dir)
    else:
        app_data_dir = Path.home() / '.config' / 'interstellar'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._load_config()
        self._apply_environment()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'server': {
                'host': '0.0.0.0',
                'port': 8080,
            },

            'auth': {
                'challenge': False,
                'realm': 'Interstellar',
                'users': {},
            },

            'tls': {
                'enabled': False,
                'cert_path': None,  # None = самоподписанный сертификат в app data
                'key_path': None,
                'hostname': 'localhost',
            },

            'cache': {
                'ttl_seconds': DEFAULT_TTL_SECONDS,
            },

            'mirror': {
                'namespace': '/e/',
                'timeout': 30.0,
                'max_concurrent_fetches': 50,
                'binary_extensions': ['.unityweb'],
                'upstreams': [list(pair) for pair in DEFAULT_UPSTREAMS],
            },

            'tunnel': {
                'prefix': '/fq/',
                'backend_url': '',  # пусто = туннель не настроен
                'timeout': 30.0,
            },

            'pages': {
                'static_dir': str(PROJECT_ROOT / 'static'),
                'routes': {
                    '/': 'index.html',
                    '/yz': 'apps.html',
                    '/up': 'games.html',
                    '/vk': 'settings.html',
                    '/rx': 'tabs.html',
                },
                'not_found_page': '404.html',
            },
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    # Объединяем с дефолтными значениями
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, ValueError) as e:
            logger.error(f"Ошибка загрузки конфига {self.config_path}: {e}")

        return default_config

    def _apply_environment(self):
        """PORT из окружения имеет приоритет над файлом"""
        port = os.getenv('PORT')
        if not port:
            return
        try:
            self.set('server.port', int(port))
        except ValueError:
            logger.warning(f"⚠️ Invalid PORT environment value: {port!r}")

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

    def get_upstreams(self) -> List[Tuple[str, str]]:
        """Возвращает список (prefix, origin_base) в порядке из конфигурации"""
        upstreams = self.get('mirror.upstreams', [])
        if isinstance(upstreams, dict):
            # Словарь в JSON тоже сохраняет порядок ключей
            return list(upstreams.items())
        return [(prefix, origin) for prefix, origin in upstreams]

    def reset_to_defaults(self) -> bool:
        """Сбрасывает настройки к значениям по умолчанию"""
        self.config = self._get_default_config()
        return self.save()


# Синглтон для глобального доступа
_config_instance = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """Возвращает глобальный экземпляр ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager(config_path)
    return _config_instance
