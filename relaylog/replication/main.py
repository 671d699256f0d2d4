#!/usr/bin/env python3
"""
Main entry point for the relaylog hub.

Runs the replication loop (catch-up, then long-poll) and the send queue
against one set of event logs.

Usage:
    relaylog-hub --config ~/.relaylog/relaylog.yaml
    relaylog-hub --worker https://worker.example --phone 1234567890 --data ./data
"""

import argparse
import signal
import sys
import threading
from typing import Mapping, Optional, Sequence

from relaylog.consumer.cursor import CursorStore
from relaylog.core.log.log import RotatingLog
from relaylog.core.log.pool import ShardedLogPool
from relaylog.replication.client import WorkerClient
from relaylog.replication.loop import EventWriter, ReplicationLoop
from relaylog.replication.sender import MetaLog, SendQueue
from relaylog.utils.config import Config, ConfigError, HubSettings
from relaylog.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="relaylog-hub",
        description="relaylog hub - replicate worker messages into rotating event logs",
    )

    parser.add_argument('--config', type=str, help='Config file (YAML or JSON)')
    parser.add_argument('--base', type=str, help='Runtime directory (default pipe location)')
    parser.add_argument('--data', type=str, help='Directory for logs and cursor state')
    parser.add_argument('--aliases', type=str, help='Alias file')
    parser.add_argument('--fifo', type=str, help='Send pipe path')
    parser.add_argument('--worker', type=str, help='Worker base URL')
    parser.add_argument('--phone', type=str, help='Sender phone number id')
    parser.add_argument('--timeout', type=int, help='Long-poll timeout in seconds (default: 25)')
    parser.add_argument('--limit', type=int, help='Page size (default: 200)')

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )

    parser.add_argument(
        '--log-format',
        type=str,
        choices=['console', 'json'],
        help='Log output format (default: console)'
    )

    return parser.parse_args(argv)


def build_settings(
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]] = None,
) -> HubSettings:
    """
    Merge file, environment and command-line configuration.

    Raises:
        ConfigError: If the configuration is unusable
    """
    config = Config(args.config, environ=environ)
    config.apply_overrides({
        "base_dir": args.base,
        "data_dir": args.data,
        "aliases_path": args.aliases,
        "fifo_path": args.fifo,
        "worker": args.worker,
        "phone_id": args.phone,
        "lp_timeout_sec": args.timeout,
        "pull_limit": args.limit,
        "logging.level": args.log_level,
        "logging.format": args.log_format,
    })
    return config.settings()


def run(settings: HubSettings, stop_event: threading.Event) -> int:
    """
    Run the hub until the stop event is set.

    Returns:
        Process exit status
    """
    # per_dir is left to the pool, which logs and drops on failure
    try:
        for directory in (settings.base_dir, settings.data_dir, settings.global_dir):
            directory.mkdir(parents=True, exist_ok=True)

        global_log = RotatingLog(
            settings.global_log_path,
            rotate_bytes=settings.rotate_global_bytes,
            archive_timefmt=settings.archive_timefmt,
            fsync_on_append=settings.fsync_on_append,
        )
    except OSError as e:
        logger.error("Cannot open global log", path=str(settings.global_log_path), error=str(e))
        return 2

    try:
        meta_log = MetaLog(settings.meta_log_path)
    except OSError as e:
        logger.error("Cannot open meta log", path=str(settings.meta_log_path), error=str(e))
        global_log.close()
        return 2

    pool = ShardedLogPool(
        settings.per_dir,
        prefix=settings.per_prefix,
        suffix=settings.per_suffix,
        rotate_bytes=settings.rotate_peer_bytes,
        archive_timefmt=settings.archive_timefmt,
        fsync_on_append=settings.fsync_on_append,
    )
    writer = EventWriter(global_log, pool)
    client = WorkerClient(settings.worker)

    sender = SendQueue(
        settings.fifo_path,
        client=client,
        writer=writer,
        meta_log=meta_log,
        phone_id=settings.phone_id,
        aliases_path=settings.aliases_path,
    )
    loop = ReplicationLoop(
        client,
        CursorStore(settings.state_path),
        writer,
        aliases_path=settings.aliases_path,
        pull_limit=settings.pull_limit,
        lp_timeout_sec=settings.lp_timeout_sec,
        retry_backoff_ms=settings.retry_backoff_ms,
    )

    try:
        sender.start()
    except OSError as e:
        logger.error("Cannot open send pipe", path=str(settings.fifo_path), error=str(e))
        client.close()
        pool.close()
        global_log.close()
        meta_log.close()
        return 2

    try:
        cursor = loop.run(stop_event)
        logger.info("Hub stopped", cursor=cursor)
    finally:
        sender.stop()
        client.close()
        pool.close()
        global_log.close()
        meta_log.close()

    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = build_settings(args)
        settings.require_addressing()
    except ConfigError as e:
        print(f"relaylog-hub: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)

    logger.info(
        "Starting relaylog hub",
        worker=settings.worker,
        global_log=str(settings.global_log_path),
        per_dir=str(settings.per_dir),
        state=str(settings.state_path),
    )

    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.info("Received signal, stopping", signal=signum)
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _request_stop)

    return run(settings, stop_event)


if __name__ == '__main__':
    sys.exit(main())
