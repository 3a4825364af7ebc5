from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from .lib.alerts import AlertEngine
from .lib.changes import ChangeRouter, ChangesFollower
from .lib.clients import build_sync_gateway_client
from .lib.config import AppConfig, app_config
from .lib.data.db import initialize_database
from .lib.dispatcher import EventDispatcher, describe_event
from .lib.logging_utils import setup_logging
from .lib.notifications import NotificationService, UniqushChannel
from .lib.presence import PresenceHistory
from .lib.store import AlertStore


PROJECT_ROOT = Path(__file__).resolve().parent
_config_override = os.getenv("OFFICERADAR_CONFIG")
CONFIG_PATH = Path(_config_override) if _config_override else PROJECT_ROOT / "config.yaml"

logger = logging.getLogger("officeradar.main")


def load_configuration(args: argparse.Namespace) -> AppConfig:
    config_path = Path(args.config) if args.config else CONFIG_PATH
    return app_config(
        config_path,
        overrides={
            "sync_gateway.url": args.sg_url,
            "uniqush.url": args.uq_url,
            "changes.since": args.since,
        },
    )


def run_follower(config: AppConfig, *, max_batches: Optional[int] = None) -> None:
    """
    Follow the changes feed: register device tokens for changed profiles and
    dispatch geofence events to the active alerts.
    """
    initialize_database(config.presence)
    history = PresenceHistory()

    client = build_sync_gateway_client(
        config.sync_gateway.url,
        timeout=config.sync_gateway.timeout,
        longpoll_timeout=config.sync_gateway.longpoll_timeout,
    )
    channel = UniqushChannel(
        config.uniqush.url,
        service=config.uniqush.service,
        push_service_type=config.uniqush.push_service_type,
        timeout=config.uniqush.timeout,
    )
    notifier = NotificationService(channel)
    try:
        alert_store = AlertStore(client, design=config.sync_gateway.design)
        alert_store.ensure_views()

        engine = AlertEngine(history, alert_store)
        dispatcher = EventDispatcher(
            alert_store,
            engine,
            notifier,
            history=history,
            fail_fast_actions=config.changes.fail_fast_actions,
            describe=lambda event: describe_event(client, event),
        )
        follower = ChangesFollower(
            client,
            ChangeRouter(client, notifier, dispatcher),
            since=config.changes.since,
            poll_timeout=config.sync_gateway.longpoll_timeout,
            error_delay=config.changes.error_delay,
        )
        logger.info("Following changes feed at %s", config.sync_gateway.url)
        follower.follow(max_batches=max_batches)
    finally:
        notifier.close()
        client.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Follow the OfficeRadar changes feed and fire geofence alerts.",
    )
    parser.add_argument("sg_url", nargs="?", help="Sync gateway url, with db name and no trailing slash")
    parser.add_argument("uq_url", nargs="?", help="Uniqush gateway url")
    parser.add_argument("since", nargs="?", help="Since parameter to changes feed")
    parser.add_argument("--config", default=None, help="Path to the YAML configuration file.")
    parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many change batches instead of running forever.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = load_configuration(args)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    setup_logging(config.logging.path, level=config.logging.level)
    run_follower(config, max_batches=args.max_batches)


if __name__ == "__main__":
    main()
