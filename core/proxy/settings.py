# core/proxy/settings.py
"""Настройки прокси, собранные из конфигурации"""

from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_USER_AGENT = 'WebRelay/1.0 (Rewriting Proxy)'

DEFAULT_FORWARD_HEADERS = (
    'accept',
    'accept-language',
    'accept-encoding',
)

# Заголовки, мешающие встраиванию страницы
DEFAULT_STRIP_HEADERS = (
    'x-frame-options',
    'content-security-policy',
    'x-content-type-options',
    'strict-transport-security',
)


@dataclass(frozen=True)
class ProxySettings:
    timeout: float = 30.0
    max_response_size: int = 10 * 1024 * 1024
    user_agent: str = DEFAULT_USER_AGENT
    forward_headers: Tuple[str, ...] = DEFAULT_FORWARD_HEADERS
    strip_headers: Tuple[str, ...] = DEFAULT_STRIP_HEADERS
    public_url: Optional[str] = None
    trust_forwarded_headers: bool = False
    debug: bool = False
    # Пул соединений aiohttp
    connection_limit: int = 100

    @classmethod
    def from_config(cls, config) -> 'ProxySettings':
        """
        Собирает настройки из ConfigManager

        Args:
            config: ConfigManager (или любой объект с get(key, default))
        """
        public_url = config.get('server.public_url')
        return cls(
            timeout=float(config.get('proxy.timeout', 30)),
            max_response_size=int(config.get('proxy.max_response_size', 10 * 1024 * 1024)),
            user_agent=config.get('proxy.user_agent', DEFAULT_USER_AGENT),
            forward_headers=tuple(h.lower() for h in config.get('proxy.forward_headers', DEFAULT_FORWARD_HEADERS)),
            strip_headers=tuple(h.lower() for h in config.get('proxy.strip_headers', DEFAULT_STRIP_HEADERS)),
            public_url=public_url.rstrip('/') if public_url else None,
            trust_forwarded_headers=bool(config.get('server.trust_forwarded_headers', False)),
            debug=bool(config.get('server.debug', False)),
            connection_limit=int(config.get('proxy.connection_limit', 100)),
        )
