# main.py
import argparse
import logging
import signal
import sys
import threading


def setup_logging(level: str = 'INFO'):
    """Настраивает логирование ДО всех операций с ротацией"""
    from core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    app_data_dir = get_app_data_dir()
    logs_dir = app_data_dir / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "interstellar.log"

    # Ротирующий обработчик: макс 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[console_handler, file_handler]
    )


logger = logging.getLogger(__name__)


def setup_exception_handler():
    """Настраивает глобальный обработчик исключений"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Необработанное исключение:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Interstellar edge server')
    parser.add_argument('--config', default=None,
                        help='Path to config.json (default: app data dir)')
    parser.add_argument('--host', default=None,
                        help='Listen address (overrides server.host)')
    parser.add_argument('--port', type=int, default=None,
                        help='Listen port (overrides server.port and PORT)')
    parser.add_argument('--log-level', default='INFO',
                        help='Logging level (DEBUG, INFO, WARNING, ERROR)')
    return parser.parse_args(argv)


def main(argv=None):
    """Основная функция приложения"""
    args = parse_args(argv)

    # НАСТРАИВАЕМ ЛОГИРОВАНИЕ САМЫМ ПЕРВЫМ ДЕЛОМ
    setup_logging(args.log_level)
    setup_exception_handler()

    logger.info("🚀 Starting Interstellar server...")

    from core.config_manager import get_config
    from core.server_manager import ServerManager

    config = get_config(args.config)
    if args.host:
        config.set('server.host', args.host)
    if args.port:
        config.set('server.port', args.port)

    server = ServerManager(config)
    if not server.start():
        logger.error(f"❌ Не удалось запустить сервер: {server.last_error_details}")
        return 1

    stop_event = threading.Event()

    def on_signal(signum, frame):
        logger.info(f"Получен сигнал {signum}, завершение работы")
        stop_event.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    while not stop_event.is_set() and server.thread.is_alive():
        stop_event.wait(1)

    server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
