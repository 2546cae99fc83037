#!/usr/bin/env python3
"""
Work order clock terminal runtime

- USB keyboard-wedge scanner input (evdev)
- User badge -> work order clock in/out against the remote command queue
- Local control panel (terminal_dashboard.py) for quantity entry and settings
"""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import os
import signal
import threading

from command_client import CommandClient, CommandClientConfig, normalize_base_url
from scan_framer import ScanFramer
from scan_orchestrator import ScanOrchestrator
from terminal_config import TerminalConfig, ensure_terminal_dir, env_int

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def _build_log_handlers():
    max_mb = env_int('WOCLOCK_LOG_MAX_MB', 50)
    if max_mb <= 0:
        max_mb = 50
    backups = env_int('WOCLOCK_LOG_BACKUPS', 3)
    if backups < 0:
        backups = 0

    log_dir = ensure_terminal_dir('logs')
    rotating = logging.handlers.RotatingFileHandler(
        log_dir / 'woclock_terminal.log',
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding='utf-8',
    )
    stream = logging.StreamHandler()
    return [rotating, stream]


def configure_logging(level=logging.INFO):
    # Rotate to keep the SD card from filling up on long-running terminals.
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=_build_log_handlers())


def build_client(config: TerminalConfig) -> CommandClient:
    return CommandClient(CommandClientConfig(
        base_url=normalize_base_url(config.get('server.base_url')),
        timeout_seconds=config.get_float('server.timeout_seconds', 10),
        command_timeout_seconds=config.get_float('server.command_timeout_seconds', 30.0),
        poll_interval_seconds=config.get_float('server.poll_interval_seconds', 1.0),
    ))


def build_framer(config: TerminalConfig, orchestrator: ScanOrchestrator) -> ScanFramer:
    return ScanFramer(
        on_barcode=orchestrator.process_scanned_code,
        scan_timeout=config.get_float('scanning.scan_timeout_ms', 300) / 1000.0,
        min_length=int(config.get('scanning.min_barcode_length', 3)),
    )


def _health_check_loop(orchestrator: ScanOrchestrator, interval_s: float, stop_event: threading.Event):
    while not stop_event.wait(interval_s):
        orchestrator.check_server_connection()


def _print_devices() -> int:
    from wedge_input import list_input_devices

    try:
        devices = list_input_devices()
    except RuntimeError as e:
        print(f"❌ {e}")
        return 1
    if not devices:
        print("No keyboard-like input devices found")
        return 1
    for path, name, is_scanner in devices:
        marker = "📷" if is_scanner else "⌨️ "
        print(f"{marker} {path}  {name}")
    print("\nSet input.barcode_device in config.json to the scanner path.")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Work order clock terminal')
    parser.add_argument('--config', default=os.environ.get('WOCLOCK_CONFIG_PATH', 'config.json'),
                        help='Configuration file path')
    parser.add_argument('--server-url', help='Override server.base_url for this run')
    parser.add_argument('--no-dashboard', action='store_true', help='Do not start the local control panel')
    parser.add_argument('--list-devices', action='store_true', help='List candidate scanner devices and exit')
    args = parser.parse_args(argv)

    if args.list_devices:
        return _print_devices()

    configure_logging()

    try:
        config = TerminalConfig(args.config)
        if args.server_url:
            config.set('server.base_url', args.server_url, persist=False)
        client = build_client(config)
    except Exception as e:
        logging.error(f"Failed to start terminal: {e}")
        return 1

    orchestrator = ScanOrchestrator(client)
    framer = build_framer(config, orchestrator)
    orchestrator.start()
    orchestrator.check_server_connection()
    logging.info("🟢 Terminal %s started - server %s", config.get('terminal_id'), client.base_url)

    reader = None
    try:
        from wedge_input import WedgeScannerReader

        reader = WedgeScannerReader(
            framer,
            device_path=(config.get('input.barcode_device') or None),
            grab=bool(config.get('input.grab', True)),
        )
        reader.start()
        logging.info("Listening for barcode scans on %s", reader.device_path)
    except (RuntimeError, OSError) as e:
        # The control panel still accepts typed codes without a scanner.
        logging.error(f"Barcode scanner unavailable: {e}")

    stop_event = threading.Event()

    def _handle_signal(_sig, _frame):
        stop_event.set()
        # Unwinds the blocking control panel server as well.
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    interval_s = config.get_float('server.health_check_interval_seconds', 30.0)
    if interval_s > 0:
        threading.Thread(
            target=_health_check_loop,
            args=(orchestrator, interval_s, stop_event),
            name="woclock-health",
            daemon=True,
        ).start()

    try:
        if bool(config.get('dashboard.enabled', True)) and not args.no_dashboard:
            import terminal_dashboard

            terminal_dashboard.app.orchestrator = orchestrator
            terminal_dashboard.app.terminal_config = config
            bind_host = config.get('dashboard.host', '0.0.0.0')
            bind_port = int(config.get('dashboard.port', 5006))
            # Single process so the panel shares this orchestrator instance.
            terminal_dashboard.app.run(host=bind_host, port=bind_port, debug=False, use_reloader=False)
        else:
            while not stop_event.wait(1.0):
                pass
    except KeyboardInterrupt:
        logging.info("Terminal stopped by user")
    finally:
        stop_event.set()
        if reader is not None:
            reader.close()
        framer.close()
        orchestrator.stop()
        client.close()
        logging.info("Terminal shutdown completed")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
