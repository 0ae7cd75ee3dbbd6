# main.py
import argparse
import asyncio
import json
import logging
import os
import sys
import time

import aiohttp

logger = logging.getLogger(__name__)

API_KEY_ENV = 'HOLDED_API_KEY'


def setup_logging(level=logging.INFO):
    """Configures console and rotating file logging"""
    from core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    app_data_dir = get_app_data_dir()
    logs_dir = app_data_dir / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "holded_relay.log"

    # 5MB per file, 5 backups
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,
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
        level=level,
        handlers=[console_handler, file_handler]
    )


def setup_exception_handler():
    """Logs uncaught exceptions before the process dies"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Unhandled exception:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def build_parser(config) -> argparse.ArgumentParser:
    client_config = config.get_client_config()

    parser = argparse.ArgumentParser(description="Holded API relay")
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command')

    serve_parser = subparsers.add_parser('serve', help='Run the relay server')
    serve_parser.add_argument('--host', default=None,
                              help=f"Bind address (default: {config.get('relay.host')})")
    serve_parser.add_argument('-p', '--port', type=int, default=None,
                              help=f"Port to listen on (default: {config.get('relay.port')})")

    client_parent = argparse.ArgumentParser(add_help=False)
    client_parent.add_argument('--relay-url', default=client_config.get('relay_url'),
                               help='Relay base URL')
    client_parent.add_argument('--api-key', default=os.getenv(API_KEY_ENV),
                               help=f'Holded API key (default: ${API_KEY_ENV})')

    subparsers.add_parser('employees', parents=[client_parent], help='List all employees')
    for name, help_text in (('times', 'List time entries of an employee'),
                            ('clockin', 'Clock in an employee'),
                            ('clockout', 'Clock out an employee')):
        sub = subparsers.add_parser(name, parents=[client_parent], help=help_text)
        sub.add_argument('employee_id')

    return parser


def run_server(manager, host=None, port=None) -> int:
    """Runs the relay until interrupted"""
    if not manager.start(host=host, port=port):
        status = manager.get_status()
        logger.error(f"❌ Relay failed to start: {status.get('error')}")
        return 1

    try:
        while manager.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        manager.stop()
    return 0


async def run_client_command(args, session):
    from core import relay_client

    if args.command == 'employees':
        return await relay_client.get_employees(session)
    if args.command == 'times':
        return await relay_client.get_employee_times(session, args.employee_id)
    if args.command == 'clockin':
        return await relay_client.clock_in(session, args.employee_id)
    if args.command == 'clockout':
        return await relay_client.clock_out(session, args.employee_id)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    """Entry point"""
    from core.config_manager import get_config
    from core.relay_client import RelaySession, RelayClientError, MissingApiKeyError

    # Logging first, so config load errors reach the log file
    setup_logging()
    setup_exception_handler()

    config = get_config()
    parser = build_parser(config)
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'serve':
        from core.relay_manager import RelayManager
        return run_server(RelayManager(config), host=args.host, port=args.port)

    try:
        session = RelaySession(
            args.relay_url,
            args.api_key,
            timeout=config.get('client.timeout', 60)
        )
    except MissingApiKeyError:
        logger.error(f"❌ No API key: pass --api-key or set {API_KEY_ENV}")
        return 2

    try:
        result = asyncio.run(run_client_command(args, session))
    except (RelayClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"❌ {e}")
        return 1

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
