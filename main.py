# main.py
import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler

from core.config_manager import get_app_data_dir, get_config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(config):
    """Настраивает логирование ДО всех операций с ротацией"""
    logs_dir = get_app_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "webrelay.log"

    # Ротирующий обработчик: по умолчанию макс 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=int(config.get('logging.max_bytes', 5 * 1024 * 1024)),
        backupCount=int(config.get('logging.backup_count', 5)),
        encoding='utf-8'
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    level = 'DEBUG' if config.get('server.debug') else config.get('logging.level', 'INFO')
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        handlers=[console_handler, file_handler],
        force=True
    )


def setup_exception_handler():
    """Настраивает глобальный обработчик исключений"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Необработанное исключение:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='webrelay',
        description='Rewriting forward proxy: fetches pages server-side and keeps their resources proxied.'
    )
    parser.add_argument('--host', help='Interface to bind (default from config: 0.0.0.0)')
    parser.add_argument('--port', type=int, help='Port to listen on (default from config or $PORT: 3000)')
    parser.add_argument('--public-url', help='Externally visible base URL used in rewritten links')
    parser.add_argument('--debug', action='store_true', help='Verbose logging and stack traces in error responses')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Основная функция приложения"""
    args = parse_args(argv)
    config = get_config()

    # Флаги командной строки важнее файла и окружения
    if args.host:
        config.set('server.host', args.host)
    if args.port:
        config.set('server.port', args.port)
    if args.public_url:
        config.set('server.public_url', args.public_url)
    if args.debug:
        config.set('server.debug', True)

    setup_logging(config)
    setup_exception_handler()

    logger.info("🚀 Запуск WebRelay")
    logger.debug(f"Конфигурация: {config.config_path}")

    from core.proxy_manager import ProxyManager
    proxy_manager = ProxyManager(config)

    try:
        return asyncio.run(proxy_manager.serve_forever())
    except KeyboardInterrupt:
        logger.info("🛑 Завершение работы приложения")
        return 0


if __name__ == "__main__":
    sys.exit(main())
