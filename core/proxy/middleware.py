# core/proxy/middleware.py
"""CORS и единый формат ошибок"""

import logging

from aiohttp import web

from core.proxy.errors import AppError

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = 'GET, POST, OPTIONS'
CORS_ALLOW_HEADERS = 'Content-Type, X-Session-ID'

# Разрешительная политика: прокси встраивает чужие страницы
CONTENT_SECURITY_POLICY = (
    "default-src 'self' 'unsafe-inline' 'unsafe-eval' data: blob: https:; "
    "script-src 'self' 'unsafe-inline' 'unsafe-eval' blob: https:; "
    "style-src 'self' 'unsafe-inline' https:; "
    "img-src 'self' data: blob: https:; "
    "connect-src 'self' https: wss:;"
)


def _apply_cors(request: web.Request, response: web.StreamResponse):
    origin = request.headers.get('Origin')

    if origin:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
        response.headers['Vary'] = 'Origin'
    else:
        response.headers['Access-Control-Allow-Origin'] = '*'

    response.headers['Access-Control-Allow-Methods'] = CORS_ALLOW_METHODS
    response.headers['Access-Control-Allow-Headers'] = CORS_ALLOW_HEADERS
    response.headers['Content-Security-Policy'] = CONTENT_SECURITY_POLICY


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """CORS для всех ответов, включая ошибки; preflight отвечаем сразу"""
    if request.method == 'OPTIONS':
        response = web.Response(status=200)
        _apply_cors(request, response)
        return response

    try:
        response = await handler(request)
    except web.HTTPException as e:
        _apply_cors(request, e)
        raise

    _apply_cors(request, response)
    return response


def error_middleware_factory(debug: bool = False):
    """
    Создаёт middleware, превращающий исключения в JSON конверт

    Args:
        debug: Добавлять stack trace в ответ
    """

    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)

        except AppError as e:
            logger.error(
                f"❌ {e.code}: {e.message}\n"
                f"   Path: {request.method} {request.path}"
            )
            return web.json_response(e.to_envelope(debug=debug), status=e.status)

        except web.HTTPException:
            raise

        except Exception as e:
            logger.error(f"❌ Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
            error = AppError('An unexpected error occurred', 500, 'INTERNAL_ERROR')
            error.__cause__ = e
            return web.json_response(error.to_envelope(debug=debug), status=500)

    return error_middleware
