# core/proxy/url_codec.py
"""Кодирование, валидация и разбор целевых URL"""

import base64
import binascii
import logging
from urllib.parse import urlsplit, parse_qsl, urlencode, urlunsplit

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ('http', 'https')

# Грубый фильтр SSRF, не полноценная проверка CIDR
BLOCKED_HOSTS = {'localhost', '127.0.0.1', '0.0.0.0', '::1'}
PRIVATE_PREFIXES = ('10.', '172.16.', '192.168.')

SENSITIVE_PARAMS = ('token', 'key', 'password', 'secret', 'auth')


class DecodeError(ValueError):
    """Токен не является корректным URL-safe Base64 / UTF-8"""


def encode_url(url: str) -> str:
    """
    Кодирует URL в URL-safe Base64 без паддинга

    Args:
        url: Абсолютный URL

    Returns:
        str: Токен ('' для пустого ввода)
    """
    if not url:
        return ''

    encoded = base64.b64encode(url.encode('utf-8')).decode('ascii')
    return encoded.replace('+', '-').replace('/', '_').rstrip('=')


def decode_url(token: str) -> str:
    """
    Декодирует токен, созданный encode_url

    Raises:
        DecodeError: если токен повреждён
    """
    if not token:
        return ''

    restored = token.replace('-', '+').replace('_', '/')
    restored += '=' * (-len(restored) % 4)

    try:
        raw = base64.b64decode(restored, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid Base64 token: {e}") from e

    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"Decoded token is not valid UTF-8: {e}") from e


def is_valid_url(url: str) -> bool:
    """
    Проверяет, что URL можно проксировать

    Разрешены только http/https и публичные хосты. Проверка приватных
    диапазонов ограничена префиксами 10., 172.16. и 192.168.
    """
    if not url:
        return False

    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except ValueError:
        return False

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return False

    if not hostname:
        return False

    hostname = hostname.lower()
    if hostname in BLOCKED_HOSTS:
        return False

    if hostname.startswith(PRIVATE_PREFIXES):
        return False

    return True


def extract_domain(url: str) -> str:
    """Возвращает hostname или 'unknown'"""
    try:
        hostname = urlsplit(url).hostname
    except (ValueError, TypeError, AttributeError):
        return 'unknown'
    return hostname or 'unknown'


def sanitize_url(url: str) -> str:
    """Маскирует чувствительные query-параметры (для логов)"""
    if not url:
        return ''

    try:
        parsed = urlsplit(url)
        params = parse_qsl(parsed.query, keep_blank_values=True)
    except ValueError:
        return url

    if not any(name in SENSITIVE_PARAMS for name, _ in params):
        return url

    masked = [
        (name, '[REDACTED]' if name in SENSITIVE_PARAMS else value)
        for name, value in params
    ]
    return urlunsplit(parsed._replace(query=urlencode(masked)))
