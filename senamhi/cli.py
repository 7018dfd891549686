"""CLI entry point for the SENAMHI forecast service."""

import argparse
import asyncio
import json
import logging
import sys

import httpx

from senamhi.config.loader import get_config_value, load_config
from senamhi.ingest.errors import FetchError
from senamhi.models.common import ms_to_iso
from senamhi.models.forecast import locations_to_json
from senamhi.storage.snapshot_store import SnapshotStore, age_ms, is_fresh

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="senamhi",
        description="SENAMHI forecast scraper and API",
    )
    parser.add_argument(
        "--config", default=None, help="Config YAML path (defaults only if omitted)"
    )

    sub = parser.add_subparsers(dest="command")

    # serve
    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", default=None, help="Bind address")
    serve_p.add_argument("--port", type=int, default=None, help="Listen port")

    # fetch
    fetch_p = sub.add_parser("fetch", help="Fetch the forecast once and print it")
    fetch_p.add_argument(
        "--force", action="store_true", help="Ignore a fresh cache entry"
    )

    # cache
    sub.add_parser("cache", help="Show cache file status")

    # config show / config get
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display effective config")
    get_p = config_sub.add_parser("get", help="Print one config value")
    get_p.add_argument("key", help="Dotted key, e.g. cache.ttl_ms")

    # health
    health_p = sub.add_parser("health", help="Probe a running server")
    health_p.add_argument(
        "--url", default=None, help="Base URL (default: http://localhost:<port>)"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.excepthook = _log_uncaught

    config = load_config(args.config)

    if args.command == "serve":
        return _cmd_serve(config, args)
    elif args.command == "fetch":
        return _cmd_fetch(config, args)
    elif args.command == "cache":
        return _cmd_cache(config, args)
    elif args.command == "config":
        return _cmd_config(config, args)
    elif args.command == "health":
        return _cmd_health(config, args)
    else:
        parser.print_help()
        return 1


def _cmd_serve(config, args) -> int:
    import uvicorn

    from senamhi.api import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port
    app = create_app(config)
    logger.info("Server listening on http://%s:%d", host, port)
    logger.info("Forecast API: http://localhost:%d/api/forecast", port)
    uvicorn.run(app, host=host, port=port)
    return 0


def _cmd_fetch(config, args) -> int:
    from senamhi.api import build_coordinator

    coordinator = build_coordinator(config)
    try:
        locations = asyncio.run(coordinator.get_data(force=args.force))
    except FetchError as e:
        print(f"Error: {e}")
        return 1
    print(json.dumps(locations_to_json(locations), indent=2, ensure_ascii=False))
    return 0


def _cmd_cache(config, args) -> int:
    store = SnapshotStore(config.cache.path)
    snapshot = store.load()
    print(f"Cache file: {store.path}")
    if snapshot is None:
        print("No usable snapshot")
        return 1
    fresh = is_fresh(snapshot, config.cache.ttl_ms)
    print(f"Captured at: {ms_to_iso(snapshot.captured_at)}")
    print(f"Age: {age_ms(snapshot) / 60000:.1f} min (TTL {config.cache.ttl_ms / 60000:.0f} min)")
    print(f"Fresh: {fresh}")
    print(f"Locations: {len(snapshot.locations)}")
    return 0


def _cmd_config(config, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "get":
        try:
            print(get_config_value(config, args.key))
            return 0
        except KeyError as e:
            print(f"Error: {e}")
            return 1
    else:
        print("Use: config show | config get key")
        return 1


def _cmd_health(config, args) -> int:
    base = (args.url or f"http://localhost:{config.server.port}").rstrip("/")
    try:
        resp = httpx.get(f"{base}/health", timeout=10.0)
        ok = resp.status_code == 200 and resp.json().get("ok") is True
    except (httpx.HTTPError, ValueError) as e:
        print(f"Server at {base}: FAIL ({e})")
        return 1
    print(f"Server at {base}: {'OK' if ok else 'FAIL'}")
    return 0 if ok else 1


def _log_uncaught(exc_type, exc, tb) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
