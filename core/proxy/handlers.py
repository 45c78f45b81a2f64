# core/proxy/handlers.py
"""
HTTP обработчики API прокси

/api/proxy    - страница целиком в JSON конверте (HTML перезаписан)
/api/resource - сырой ресурс (CSS/JS/картинки/шрифты) без конверта
/api/encode, /api/decode - URL-safe Base64 для клиента
"""

import logging
import time
from typing import Any, Dict, Mapping

from aiohttp import web
from multidict import CIMultiDict

from core.proxy.content_rewriter import ContentRewriter, transform_html
from core.proxy.errors import AppError, BadRequestError, InvalidUrlError
from core.proxy.fetcher import ContentFetcher
from core.proxy.settings import ProxySettings
from core.proxy.url_codec import (
    DecodeError,
    decode_url,
    encode_url,
    extract_domain,
    is_valid_url,
    sanitize_url,
)

logger = logging.getLogger(__name__)

SETTINGS_KEY = web.AppKey('settings', ProxySettings)
FETCHER_KEY = web.AppKey('fetcher', ContentFetcher)
STARTED_AT_KEY = web.AppKey('started_at', float)

PROCESSABLE_TYPES = (
    'text/html',
    'text/plain',
    'text/css',
    'text/javascript',
    'application/javascript',
    'application/json',
    'application/xml',
    'text/xml',
    'image/',
    'font/',
    'application/font',
    'application/octet-stream',
)

# Тело пересобирается заново, эти заголовки больше не соответствуют ему
HOP_BY_HOP_HEADERS = (
    'content-encoding',
    'content-length',
    'transfer-encoding',
    'connection',
    'keep-alive',
)


def is_processable_content(content_type: str) -> bool:
    """Можно ли отдать этот Content-Type через /api/proxy"""
    content_type = content_type.lower()
    return any(t in content_type for t in PROCESSABLE_TYPES)


def get_proxy_base(request: web.Request, settings: ProxySettings) -> str:
    """Внешний адрес прокси, на который указывают перезаписанные ссылки"""
    if settings.public_url:
        return settings.public_url

    scheme = request.scheme
    host = request.host
    if settings.trust_forwarded_headers:
        scheme = request.headers.get('X-Forwarded-Proto', scheme).split(',')[0].strip()
        host = request.headers.get('X-Forwarded-Host', host).split(',')[0].strip()

    return f"{scheme}://{host}"


def build_response_headers(upstream: Mapping[str, str], strip_headers) -> Dict[str, str]:
    """
    Заголовки ответа цели для JSON конверта

    Повторяющиеся заголовки склеиваются через ', '.
    """
    headers = {}
    for name, value in upstream.items():
        key = name.lower()
        if key in strip_headers:
            continue
        headers[key] = f"{headers[key]}, {value}" if key in headers else value
    return headers


def build_relay_headers(upstream: Mapping[str, str], strip_headers) -> CIMultiDict:
    headers = CIMultiDict()
    for name, value in upstream.items():
        key = name.lower()
        if key in strip_headers or key in HOP_BY_HOP_HEADERS:
            continue
        headers.add(name, value)
    return headers


async def _read_body(request: web.Request) -> Dict[str, Any]:
    """Тело запроса как dict (JSON или форма)"""
    if not request.can_read_body:
        return {}

    if request.content_type == 'application/json':
        try:
            body = await request.json()
        except ValueError:
            raise BadRequestError('Request body is not valid JSON', 'INVALID_JSON')
        if not isinstance(body, dict):
            raise BadRequestError('Request body must be a JSON object', 'INVALID_JSON')
        return body

    form = await request.post()
    return dict(form)


def _is_encoded_flag(value: Any) -> bool:
    return value is True or value == 'true'


async def handle_encode(request: web.Request) -> web.Response:
    body = await _read_body(request)
    url = body.get('url')

    if not url or not isinstance(url, str) or not is_valid_url(url):
        raise InvalidUrlError(url)

    return web.json_response({
        'success': True,
        'original': url,
        'encoded': encode_url(url),
    })


async def handle_decode(request: web.Request) -> web.Response:
    body = await _read_body(request)
    encoded = body.get('encoded')

    if not encoded or not isinstance(encoded, str):
        raise BadRequestError('No encoded URL provided', 'MISSING_PARAMETER')

    try:
        decoded = decode_url(encoded)
    except DecodeError as e:
        raise BadRequestError('Encoded URL is malformed', 'INVALID_ENCODING', {'encoded': encoded, 'reason': str(e)})

    return web.json_response({
        'success': True,
        'encoded': encoded,
        'decoded': decoded,
    })


async def handle_proxy(request: web.Request) -> web.Response:
    """
    Основной обработчик: загрузить страницу и вернуть JSON конверт

    URL берётся из query (GET) или тела (POST); query важнее.
    """
    settings = request.app[SETTINGS_KEY]
    fetcher = request.app[FETCHER_KEY]

    params = await _read_body(request) if request.method == 'POST' else {}
    params.update({key: value for key, value in request.query.items() if value})

    target_url = params.get('url')
    is_encoded = _is_encoded_flag(params.get('encoded'))

    logger.info(f"📨 Proxy request: {sanitize_url(str(target_url))} (encoded: {is_encoded})")

    if is_encoded and isinstance(target_url, str) and target_url:
        try:
            target_url = decode_url(target_url)
        except DecodeError:
            raise InvalidUrlError(target_url)
        logger.debug(f"Decoded URL: {sanitize_url(target_url)}")

    if not target_url or not isinstance(target_url, str) or not is_valid_url(target_url):
        raise InvalidUrlError(target_url)

    result = await fetcher.fetch(target_url, request.headers, content_filter=is_processable_content)

    content_type = result.content_type or 'text/html'
    content = result.text()

    if 'text/html' in content_type.lower():
        content = transform_html(content, result.final_url, get_proxy_base(request, settings))

    if result.final_url != target_url:
        logger.info(f"↪️ Final URL after redirects: {sanitize_url(result.final_url)}")

    return web.json_response({
        'success': True,
        'type': 'content',
        'metadata': {
            'url': result.final_url,
            'domain': extract_domain(result.final_url),
            'statusCode': result.status,
            'contentType': content_type,
            'contentLength': len(content),
            'fetchTimeMs': result.fetch_time_ms,
        },
        'headers': build_response_headers(result.headers, settings.strip_headers),
        'content': content,
    })


async def handle_resource(request: web.Request) -> web.Response:
    """
    Отдаёт ресурс как есть (без JSON конверта)

    CSS и HTML перезаписываются относительно URL самого ресурса,
    остальное (JS, картинки, шрифты) пропускается без изменений.
    Ошибки отдаются текстом с классифицированным статусом.
    """
    settings = request.app[SETTINGS_KEY]
    fetcher = request.app[FETCHER_KEY]

    target_url = request.query.get('url')
    if not target_url:
        return web.Response(status=400, text='URL parameter required')

    if _is_encoded_flag(request.query.get('encoded')):
        try:
            target_url = decode_url(target_url)
        except DecodeError:
            return web.Response(status=400, text='Encoded URL is malformed')

    if not is_valid_url(target_url):
        return web.Response(status=400, text=InvalidUrlError(target_url).message)

    logger.debug(f"📦 Resource: {sanitize_url(target_url)}")

    try:
        result = await fetcher.fetch(target_url, request.headers)
    except AppError as e:
        logger.warning(f"⚠️ Resource failed: {sanitize_url(target_url)} -> {e.code}")
        return web.Response(status=e.status, text=e.message)

    content_type = result.content_type or 'application/octet-stream'
    lowered = content_type.lower()
    mime_type = lowered.split(';', 1)[0].strip()

    if 'text/css' in lowered:
        rewriter = ContentRewriter(result.final_url, get_proxy_base(request, settings))
        body = rewriter.rewrite_css(result.text()).encode('utf-8')
        content_type = f"{mime_type}; charset=utf-8"
    elif 'text/html' in lowered:
        body = transform_html(result.text(), result.final_url, get_proxy_base(request, settings)).encode('utf-8')
        content_type = f"{mime_type}; charset=utf-8"
    else:
        # JS, прочий текст и бинарные данные - байт в байт
        body = result.body

    headers = build_relay_headers(result.headers, settings.strip_headers)
    headers['Content-Type'] = content_type

    return web.Response(status=result.status, body=body, headers=headers)


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({
        'status': 'ok',
        'uptime': round(time.monotonic() - request.app[STARTED_AT_KEY], 3),
    })


def setup_routes(app: web.Application):
    """Регистрирует маршруты API"""
    app.router.add_post('/api/encode', handle_encode)
    app.router.add_post('/api/decode', handle_decode)
    app.router.add_get('/api/proxy', handle_proxy)
    app.router.add_post('/api/proxy', handle_proxy)
    app.router.add_get('/api/resource', handle_resource)
    app.router.add_get('/api/health', handle_health)
