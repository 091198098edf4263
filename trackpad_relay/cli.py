#!/usr/bin/env python3
"""
Trackpad Relay CLI - Command line interface for starting/stopping the server.
"""

import argparse
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

# PID file location
PID_FILE = Path("/tmp/trackpad-relay.pid")


def get_pid() -> int | None:
    """Get PID from file if exists."""
    if PID_FILE.exists():
        try:
            pid = int(PID_FILE.read_text().strip())
            # Check if process is running
            os.kill(pid, 0)
            return pid
        except (ValueError, OSError):
            PID_FILE.unlink(missing_ok=True)
    return None


def write_pid() -> None:
    """Write current PID to file."""
    PID_FILE.write_text(str(os.getpid()))


def remove_pid() -> None:
    """Remove PID file."""
    PID_FILE.unlink(missing_ok=True)


def apply_overrides(config, args) -> None:
    """Apply command line overrides to a Config."""
    if args.host:
        config.set("server", "host", args.host)
    if args.port:
        config.set("server", "port", args.port)
    if args.ws_port:
        config.set("server", "ws_port", args.ws_port)
    if args.upload_dir:
        config.set("files", "upload_dir", str(args.upload_dir))
    if args.static_dir:
        config.set("server", "static_dir", str(args.static_dir))
    if args.watch_clipboard:
        config.set("clipboard", "watch_host", True)
    if args.notify_uploader:
        config.set("files", "notify_uploader", True)
    if args.verbose:
        config.set("logging", "level", "DEBUG")


def cmd_start(args) -> int:
    """Start the server."""
    existing_pid = get_pid()
    if existing_pid:
        print(f"❌ Trackpad Relay is already running (PID: {existing_pid})")
        print(f"   Run 'trackpad-relay stop' first")
        return 1

    # Import here to avoid loading when not needed
    from .config import reload_config
    from .logging_utils import setup_logging
    from .server import run_server

    config = reload_config(args.config)
    apply_overrides(config, args)
    setup_logging(config.log_level)

    write_pid()

    try:
        return run_server(config)
    finally:
        remove_pid()


def cmd_stop(args) -> int:
    """Stop the server."""
    pid = get_pid()

    if not pid:
        print("ℹ️  Trackpad Relay is not running")
        return 0

    try:
        os.kill(pid, signal.SIGTERM)
        print(f"✅ Stopped Trackpad Relay (PID: {pid})")
        remove_pid()
        return 0
    except OSError as e:
        print(f"❌ Failed to stop: {e}")
        remove_pid()
        return 1


def cmd_status(args) -> int:
    """Check server status."""
    pid = get_pid()

    if pid:
        print(f"✅ Trackpad Relay is running (PID: {pid})")

        from .config import get_config
        config = get_config()
        print(f"   URL: http://{config.host}:{config.port}")
        return 0
    else:
        print("❌ Trackpad Relay is not running")
        return 1


def cmd_ip(args) -> int:
    """Show local IP address."""
    from .config import get_config, get_local_ip

    config = get_config()
    ip = get_local_ip()
    print(f"📍 Local IP: {ip}")
    print(f"   URL: http://{ip}:{config.port}")
    return 0


def cmd_config(args) -> int:
    """Show current configuration."""
    from .config import get_config, get_config_paths

    print("📝 Configuration:")
    print()

    print("   Config file search paths:")
    for path in get_config_paths():
        exists = "✓" if path.exists() else " "
        print(f"   [{exists}] {path}")
    print()

    config = get_config()
    print("   Current settings:")
    print(f"   - Host: {config.host}")
    print(f"   - Port: {config.port}")
    print(f"   - WebSocket port: {config.ws_port}")
    print(f"   - Input backend: {config.input_backend}")
    print(f"   - Clipboard history: {config.history_size}")
    print(f"   - Watch host clipboard: {config.watch_host_clipboard}")
    print(f"   - Upload dir: {config.upload_dir}")
    print(f"   - File TTL: {int(config.ttl_seconds)}s (+{int(config.grace_seconds)}s grace)")
    print(f"   - Notify uploader: {config.notify_uploader}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trackpad-relay",
        description="Use your phone as a trackpad, clipboard and file drop for this machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  trackpad-relay start                     # Start with default settings
  trackpad-relay start --port 8080         # Start on different port
  trackpad-relay start --watch-clipboard   # Share the host clipboard too
  trackpad-relay stop                      # Stop the server
  trackpad-relay status                    # Check if running
  trackpad-relay ip                        # Show local IP address
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Start command
    start_parser = subparsers.add_parser("start", help="Start the server")
    start_parser.add_argument("--config", "-c", type=Path, help="Config file path")
    start_parser.add_argument("--host", type=str, help="Bind address (default: 0.0.0.0)")
    start_parser.add_argument("--port", "-p", type=int, help="HTTP port (default: 9999)")
    start_parser.add_argument("--ws-port", type=int, help="WebSocket port (default: HTTP port + 1)")
    start_parser.add_argument("--upload-dir", type=Path, help="Where uploads are kept")
    start_parser.add_argument("--static-dir", type=Path, help="Directory with the web client")
    start_parser.add_argument("--watch-clipboard", action="store_true",
                              help="Share the host clipboard with clients")
    start_parser.add_argument("--notify-uploader", action="store_true",
                              help="Also notify the uploading session about its upload")
    start_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    start_parser.set_defaults(func=cmd_start)

    # Stop command
    stop_parser = subparsers.add_parser("stop", help="Stop the server")
    stop_parser.set_defaults(func=cmd_stop)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check server status")
    status_parser.set_defaults(func=cmd_status)

    # IP command
    ip_parser = subparsers.add_parser("ip", help="Show local IP address")
    ip_parser.set_defaults(func=cmd_ip)

    # Config command
    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
