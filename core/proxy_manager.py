# proxy_manager.py
import asyncio
import logging
import signal
import time
from typing import Optional

from aiohttp import web

from core.proxy.fetcher import ContentFetcher
from core.proxy.handlers import FETCHER_KEY, SETTINGS_KEY, STARTED_AT_KEY, setup_routes
from core.proxy.middleware import cors_middleware, error_middleware_factory
from core.proxy.settings import ProxySettings
from utils.port_utils import check_port_availability

logger = logging.getLogger(__name__)

# Аналог morgan: метод, путь, статус, время, размер
ACCESS_LOG_FORMAT = '%r %s %Tfs - %b'


def create_app(settings: ProxySettings, fetcher: Optional[ContentFetcher] = None) -> web.Application:
    """
    Создаёт aiohttp приложение прокси

    Args:
        settings: Настройки прокси
        fetcher: Готовый fetcher (по умолчанию ContentFetcher(settings))

    Returns:
        web.Application: Приложение с маршрутами /api/*
    """
    app = web.Application(middlewares=[
        cors_middleware,
        error_middleware_factory(debug=settings.debug),
    ])

    app[SETTINGS_KEY] = settings
    app[FETCHER_KEY] = fetcher or ContentFetcher(settings)
    app[STARTED_AT_KEY] = time.monotonic()

    setup_routes(app)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)

    return app


async def _on_startup(app: web.Application):
    """Инициализация connection pool"""
    fetcher = app[FETCHER_KEY]
    if hasattr(fetcher, 'initialize'):
        await fetcher.initialize()


async def _on_cleanup(app: web.Application):
    """Очистка ресурсов"""
    fetcher = app[FETCHER_KEY]
    if hasattr(fetcher, 'cleanup'):
        await fetcher.cleanup()


class ProxyManager:
    def __init__(self, config):
        """
        Args:
            config: ConfigManager с секциями server/proxy
        """
        self.config = config
        self.settings = ProxySettings.from_config(config)
        self.host = config.get('server.host', '0.0.0.0')
        self.port = int(config.get('server.port', 3000))
        self.handler_cancellation = bool(config.get('server.handler_cancellation', False))

        self.is_running = False
        self.app = None
        self.runner = None
        self.site = None

        # Error tracking
        self.last_error_type = None  # Тип последней ошибки: 'port', 'unknown'
        self.last_error_details = None

    def check_port(self) -> bool:
        """
        Проверяет, свободен ли порт

        Returns:
            bool: True если можно запускаться
        """
        port_available, port_message = check_port_availability(self.port, self.host)
        if port_available:
            return True

        logger.error(f"❌ {port_message}")
        self.last_error_type = 'port'
        self.last_error_details = port_message
        return False

    async def start(self) -> bool:
        """Асинхронный запуск сервера"""
        if self.is_running:
            logger.warning("⚠️ Прокси уже запущен")
            return False

        if not self.check_port():
            return False

        try:
            self.app = create_app(self.settings)

            self.runner = web.AppRunner(
                self.app,
                access_log_format=ACCESS_LOG_FORMAT,
                handler_cancellation=self.handler_cancellation,
            )
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, host=self.host, port=self.port)
            await self.site.start()

        except OSError as e:
            logger.error(f"❌ Ошибка запуска сервера: {e}")
            self.last_error_type = 'port'
            self.last_error_details = str(e)
            await self.stop()
            return False

        self.is_running = True
        logger.info("=" * 60)
        logger.info("🚀 Прокси сервер запущен!")
        logger.info(f"📍 Адрес: http://{self.host}:{self.port}")
        if self.settings.public_url:
            logger.info(f"🌐 Публичный адрес: {self.settings.public_url}")
        logger.info(f"⏱️ Таймаут: {self.settings.timeout}s, лимит ответа: {self.settings.max_response_size} bytes")
        logger.info("=" * 60)
        return True

    async def stop(self):
        """Асинхронная остановка сервера"""
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            # cleanup вызывает on_cleanup -> закрытие ClientSession
            await self.runner.cleanup()
            self.runner = None

        if self.is_running:
            logger.info("✅ Proxy stopped and cleaned up successfully")
        self.is_running = False

    async def serve_forever(self) -> int:
        """
        Запускает сервер и ждёт SIGINT/SIGTERM

        Returns:
            int: Код выхода процесса
        """
        if not await self.start():
            return 1

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows: остаётся KeyboardInterrupt
                pass

        try:
            await stop_event.wait()
            logger.info("🛑 Shutting down gracefully...")
        finally:
            await self.stop()

        return 0

    def get_status(self) -> dict:
        """Возвращает статус прокси"""
        return {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
            'public_url': self.settings.public_url,
            'last_error_type': self.last_error_type,
            'last_error_details': self.last_error_details,
        }
