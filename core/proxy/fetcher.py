# core/proxy/fetcher.py
"""Загрузка целевых страниц и ресурсов"""

import asyncio
import codecs
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout, TCPConnector
from multidict import CIMultiDictProxy

from core.proxy.errors import ContentError, classify_error
from core.proxy.settings import ProxySettings
from core.proxy.url_codec import sanitize_url

logger = logging.getLogger(__name__)

# Кодировки, которые aiohttp умеет распаковывать без доп. пакетов
DECODABLE_ENCODINGS = ('gzip', 'deflate', 'identity')

CHUNK_SIZE = 64 * 1024


@dataclass
class FetchResult:
    url: str
    final_url: str
    status: int
    headers: CIMultiDictProxy
    content_type: str
    charset: Optional[str]
    body: bytes
    fetch_time_ms: int

    def text(self) -> str:
        """Тело как строка (невалидные байты заменяются)"""
        return self.body.decode(self.encoding, errors='replace')

    @property
    def encoding(self) -> str:
        """Кодировка из Content-Type, utf-8 если Python её не знает"""
        if not self.charset:
            return 'utf-8'
        try:
            return codecs.lookup(self.charset).name
        except LookupError:
            logger.debug(f"Unknown charset {self.charset!r} for {sanitize_url(self.final_url)}, using utf-8")
            return 'utf-8'


def filter_accept_encoding(value: str) -> str:
    """Оставляет в Accept-Encoding только то, что мы сможем распаковать"""
    accepted = []
    for part in value.split(','):
        token = part.strip()
        if not token:
            continue
        if token.split(';', 1)[0].strip().lower() in DECODABLE_ENCODINGS:
            accepted.append(token)
    return ', '.join(accepted) or 'identity'


class ContentFetcher:
    """Один GET на вызов: без кэша и без повторов"""

    def __init__(self, settings: ProxySettings):
        self.settings = settings
        self.connector = None
        self.session = None

    async def initialize(self):
        """Инициализация connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=self.settings.connection_limit,
                ttl_dns_cache=300,
                enable_cleanup_closed=True
            )

        if self.session is None:
            self.session = ClientSession(
                connector=self.connector,
                timeout=ClientTimeout(total=self.settings.timeout)
            )

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    def build_headers(self, client_headers: Optional[Mapping[str, str]] = None) -> dict:
        """
        Заголовки для целевого сервера

        Пересылаются только заголовки из allow-list, остальное
        (cookies, авторизация прокси, Host) не уходит наружу.
        """
        headers = {
            'User-Agent': self.settings.user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.5',
        }

        if client_headers:
            for name in self.settings.forward_headers:
                value = client_headers.get(name)
                if not value:
                    continue
                if name == 'accept-encoding':
                    value = filter_accept_encoding(value)
                headers[name.title()] = value

        return headers

    async def fetch(self, url: str, client_headers: Optional[Mapping[str, str]] = None,
                    content_filter: Optional[Callable[[str], bool]] = None) -> FetchResult:
        """
        Загружает URL с ограничением по времени и размеру

        Args:
            url: Провалидированный абсолютный URL
            client_headers: Заголовки входящего запроса
            content_filter: Проверка Content-Type до чтения тела

        Returns:
            FetchResult: Результат с итоговым URL после редиректов

        Raises:
            NetworkError: Сбой транспорта (уже классифицирован)
            ContentError: Тип контента отклонён или тело слишком большое
        """
        await self.initialize()

        headers = self.build_headers(client_headers)
        max_size = self.settings.max_response_size
        start_time = time.monotonic()

        logger.debug(f"🌐 GET {sanitize_url(url)}")

        try:
            async with self.session.get(url, headers=headers, allow_redirects=True) as response:
                content_type = response.headers.get('Content-Type', '')

                if content_filter is not None and not content_filter(content_type or 'text/html'):
                    raise ContentError(content_type, 'This content type cannot be displayed in the browser')

                declared = response.content_length
                if declared is not None and declared > max_size:
                    raise ContentError(content_type, 'Response is too large to process')

                body = bytearray()
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > max_size:
                        raise ContentError(content_type, 'Response is too large to process')

                fetch_time_ms = int((time.monotonic() - start_time) * 1000)
                final_url = str(response.url)

                logger.info(
                    f"📥 {response.status} {sanitize_url(final_url)} "
                    f"({len(body)} bytes, {fetch_time_ms}ms)"
                )

                return FetchResult(
                    url=url,
                    final_url=final_url,
                    status=response.status,
                    headers=response.headers,
                    content_type=content_type,
                    charset=response.charset,
                    body=bytes(body),
                    fetch_time_ms=fetch_time_ms,
                )

        except (ClientError, asyncio.TimeoutError, OSError) as e:
            error = classify_error(e, url)
            logger.warning(f"⚠️ Fetch failed for {sanitize_url(url)}: {error.code} ({e!r})")
            raise error from e
