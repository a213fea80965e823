"""Command-line entry point.

Runs the tray application by default. ``--headless`` drives the same
controller without Qt and logs state changes instead of rendering them.
"""

import argparse
import json
import logging
import sys
import threading

from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.constants import APP_NAME, INTEGRATIONS, PROVIDERS, VERSION
from bulletproof_ui.controller import Controller
from bulletproof_ui.logging_setup import configure_logging
from bulletproof_ui.models import ConnectSettings

log = logging.getLogger(__name__)

# Upper bound for waiting on a single intent from the CLI
INTENT_TIMEOUT = 120


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulletproof-ui",
        description=f"{APP_NAME} connection controller for the bulletproofd daemon",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--headless", action="store_true", help="Run without the tray; log state changes")
    parser.add_argument("--connect", action="store_true", help="Connect once the daemon is healthy")
    parser.add_argument("--provider", choices=sorted(PROVIDERS), default="warp", help="Connection provider")
    parser.add_argument("--server", default="", help="Endpoint host (empty: auto-select)")
    parser.add_argument("--port", type=int, default=0, help="Endpoint port (0: auto-select)")
    parser.add_argument("--exit-country", default="US", help="Two-letter exit country code")
    parser.add_argument("--key", default="", help="Provider license key")
    parser.add_argument("--integration", choices=sorted(INTEGRATIONS), default="direct",
                        help="How traffic is routed into the proxy")
    parser.add_argument("--api-addr", default=None, help="Daemon control-plane address (host:port)")
    parser.add_argument("--no-daemon", action="store_true", help="Use an already running daemon")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--diag", action="store_true", help="Print daemon diagnostics as JSON and exit")
    return parser


def settings_from_args(args: argparse.Namespace) -> ConnectSettings:
    return ConnectSettings(
        provider=args.provider,
        server=args.server,
        port=args.port,
        exit_country=args.exit_country,
        key=args.key,
        integration=args.integration,
    )


def run_diagnostics(controller: Controller) -> int:
    """Print ``/v1/diag`` once the daemon answers.

    Returns:
        Exit code
    """
    controller.start().result(timeout=INTENT_TIMEOUT)
    try:
        reply = controller.diagnostics().result(timeout=INTENT_TIMEOUT)
    finally:
        controller.shutdown()
    if not reply.ok:
        print(f"Diagnostics failed: {reply.error}", file=sys.stderr)
        return 1
    print(json.dumps(reply.data, indent=2, sort_keys=True))
    return 0


def _report_startup(future) -> None:
    try:
        healthy = future.result()
    except Exception as e:
        log.error(f"Startup failed: {e}")
        return
    if not healthy:
        log.warning("Daemon is not healthy; status polling continues")


def run_headless(controller: Controller) -> int:
    """Drive the controller without a UI until interrupted.

    Returns:
        Exit code
    """
    stop = threading.Event()

    def on_change(old, new):
        if (old.phase, old.message, old.last_error) != (new.phase, new.message, new.last_error):
            log.info(f"[{new.phase.value}] {new.message}"
                     + (f" (last error: {new.last_error})" if new.last_error else ""))

    controller.store.add_listener(on_change)
    controller.events.add_listener(lambda record: log.info(f"event: {record.text}"))

    started = controller.start()
    controller.install_signal_handlers(on_signal=stop.set)
    started.add_done_callback(_report_startup)

    try:
        while not stop.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        controller.shutdown()
    return 0


def main(argv=None) -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = settings_from_args(args)
    try:
        settings.build_request()
    except ValueError as e:
        parser.error(str(e))

    configure_logging(debug=args.debug)
    config = ControllerConfig.from_env(api_addr=args.api_addr)
    controller = Controller(
        config=config,
        settings=settings,
        manage_daemon=not args.no_daemon,
        auto_connect=args.connect and not args.diag,
    )

    if args.diag:
        return run_diagnostics(controller)
    if args.headless:
        return run_headless(controller)

    from bulletproof_ui.main import run_tray

    return run_tray(controller)


if __name__ == "__main__":
    sys.exit(main())
