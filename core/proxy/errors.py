# core/proxy/errors.py
"""
Иерархия ошибок прокси и классификатор сетевых сбоев

Каждая ошибка несёт HTTP статус, машинный код и структурированные
детали с объяснением и подсказками для пользователя.
"""

import asyncio
import errno
import logging
import socket
import ssl
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

# X509_V_ERR_CERT_HAS_EXPIRED
_CERT_HAS_EXPIRED = 10


class AppError(Exception):
    """Базовая ошибка, которая отдаётся клиенту как JSON"""

    def __init__(self, message: str, status: int, code: str,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details

    def to_envelope(self, debug: bool = False) -> Dict[str, Any]:
        """
        Формирует тело ответа об ошибке

        Args:
            debug: Добавить stack trace (только для разработки)

        Returns:
            dict: {success: False, error: {code, message, timestamp, details?}}
        """
        error = {
            'code': self.code,
            'message': self.message,
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        }

        if self.details:
            error['details'] = self.details

        # Исходное исключение (если есть) информативнее обёртки
        source = self.__cause__ or self
        if debug and source.__traceback__ is not None:
            error['stack'] = traceback.format_exception(type(source), source, source.__traceback__)

        return {'success': False, 'error': error}


class InvalidUrlError(AppError):
    def __init__(self, url: Optional[str]):
        super().__init__(
            'The provided URL is not valid or is not allowed',
            400,
            'INVALID_URL',
            {
                'url': url,
                'explanation': 'URLs must start with http:// or https:// and point to a public website',
                'suggestions': [
                    'Make sure the URL includes the protocol (http:// or https://)',
                    'Check for typos in the domain name',
                    'Verify the website is publicly accessible',
                ],
            }
        )


class BadRequestError(AppError):
    """Некорректный ввод API (нет параметра, битый JSON, битый токен)"""

    def __init__(self, message: str, code: str = 'BAD_REQUEST',
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, code, details)


class ContentError(AppError):
    def __init__(self, content_type: Optional[str], reason: str):
        super().__init__(
            'Cannot process this type of content',
            415,
            'UNSUPPORTED_CONTENT',
            {
                'contentType': content_type,
                'explanation': reason,
                'suggestions': [
                    'Try fetching a regular web page (HTML content)',
                    'Some file types cannot be displayed through the proxy',
                ],
            }
        )
        self.content_type = content_type
        self.reason = reason


class ErrorKind(Enum):
    DNS_LOOKUP_FAILED = 'DNS_LOOKUP_FAILED'
    CONNECTION_REFUSED = 'CONNECTION_REFUSED'
    CONNECTION_TIMEOUT = 'CONNECTION_TIMEOUT'
    CONNECTION_RESET = 'CONNECTION_RESET'
    SSL_CERT_EXPIRED = 'SSL_CERT_EXPIRED'
    NETWORK_ERROR = 'NETWORK_ERROR'


# Тексты для пользователя: данные, а не логика
NETWORK_ERROR_INFO = {
    ErrorKind.DNS_LOOKUP_FAILED: {
        'message': 'The website could not be found',
        'explanation': 'The domain name could not be resolved to an IP address. This usually means the website does not exist or there is a DNS configuration issue.',
        'suggestions': [
            'Check that the domain name is spelled correctly',
            'Try accessing the website directly in your browser',
            'The website might be temporarily unavailable',
        ],
    },
    ErrorKind.CONNECTION_REFUSED: {
        'message': 'Connection was refused by the server',
        'explanation': 'The server exists but actively refused the connection. This could mean the web server is not running or is blocking connections.',
        'suggestions': [
            'The website might be down for maintenance',
            'Try again later',
            'The server might be blocking proxy requests',
        ],
    },
    ErrorKind.CONNECTION_TIMEOUT: {
        'message': 'Connection timed out',
        'explanation': 'The server took too long to respond. This could be due to slow network conditions or an overloaded server.',
        'suggestions': [
            'Check your internet connection',
            'The website might be experiencing high traffic',
            'Try again in a few moments',
        ],
    },
    ErrorKind.CONNECTION_RESET: {
        'message': 'Connection was reset',
        'explanation': 'The connection was unexpectedly closed by the server. This can happen due to network issues or server configuration.',
        'suggestions': [
            'Try the request again',
            'Check if the website is accessible directly',
        ],
    },
    ErrorKind.SSL_CERT_EXPIRED: {
        'message': 'SSL certificate has expired',
        'explanation': "The website's security certificate has expired. This is a configuration issue on the target website.",
        'suggestions': [
            'Contact the website administrator',
            'Try a different website',
        ],
    },
    ErrorKind.NETWORK_ERROR: {
        'message': 'Unable to connect to the website',
        'explanation': 'A network error occurred while trying to fetch the content: {error}',
        'suggestions': [
            'Check your internet connection',
            'Verify the URL is correct',
            'Try again later',
        ],
    },
}


class NetworkError(AppError):
    """Цель недоступна (502): DNS, отказ, таймаут, сброс, TLS"""

    def __init__(self, kind: ErrorKind, original: BaseException, target_url: Optional[str]):
        info = NETWORK_ERROR_INFO[kind]
        technical = str(original) or type(original).__name__

        super().__init__(
            info['message'],
            502,
            kind.value,
            {
                'targetUrl': target_url,
                'explanation': info['explanation'].format(error=technical),
                'technicalDetails': technical,
                'suggestions': list(info['suggestions']),
            }
        )
        self.kind = kind
        self.original = original


def _certificate_error(exc: BaseException) -> Optional[BaseException]:
    if isinstance(exc, aiohttp.ClientConnectorCertificateError):
        return exc.certificate_error
    if isinstance(exc, ssl.SSLCertVerificationError):
        return exc
    return None


def _os_error(exc: BaseException) -> Optional[BaseException]:
    if isinstance(exc, aiohttp.ClientConnectorError):
        return exc.os_error
    if isinstance(exc, OSError):
        return exc
    return None


def analyze_error(exc: BaseException) -> ErrorKind:
    """
    Определяет тип сетевой ошибки

    Args:
        exc: Исключение транспорта (aiohttp / OS)

    Returns:
        ErrorKind: Тип ошибки, NETWORK_ERROR если не распознан
    """
    cert_error = _certificate_error(exc)
    if cert_error is not None:
        verify_code = getattr(cert_error, 'verify_code', None)
        if verify_code == _CERT_HAS_EXPIRED or 'certificate has expired' in str(cert_error):
            return ErrorKind.SSL_CERT_EXPIRED
        return ErrorKind.NETWORK_ERROR

    if isinstance(exc, aiohttp.ClientConnectorDNSError):
        return ErrorKind.DNS_LOOKUP_FAILED

    if isinstance(exc, asyncio.TimeoutError):
        return ErrorKind.CONNECTION_TIMEOUT

    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return ErrorKind.CONNECTION_RESET

    os_error = _os_error(exc)
    if os_error is not None:
        if isinstance(os_error, socket.gaierror):
            return ErrorKind.DNS_LOOKUP_FAILED

        code = getattr(os_error, 'errno', None)
        if isinstance(os_error, ConnectionRefusedError) or code == errno.ECONNREFUSED:
            return ErrorKind.CONNECTION_REFUSED
        if isinstance(os_error, ConnectionResetError) or code == errno.ECONNRESET:
            return ErrorKind.CONNECTION_RESET
        if isinstance(os_error, TimeoutError) or code == errno.ETIMEDOUT:
            return ErrorKind.CONNECTION_TIMEOUT

    return ErrorKind.NETWORK_ERROR


def classify_error(exc: BaseException, target_url: Optional[str]) -> NetworkError:
    """Превращает ошибку транспорта в NetworkError"""
    kind = analyze_error(exc)
    logger.debug(f"Classified {type(exc).__name__} as {kind.value}")
    return NetworkError(kind, exc, target_url)
