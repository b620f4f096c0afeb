#!/usr/bin/env python3
# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Command-line interface for FairSlide.
Talks to the running service, and runs geolocation passes locally.
"""

import argparse
import json
import logging
import os
import sys
import threading
from functools import partial
from typing import List, Optional

import requests


DEFAULT_API_URL = "http://localhost:8080"
DEFAULT_COOKIE_FILE = "~/.cache/fairslide/cli-cookies.json"

logger = logging.getLogger(__name__)


def get_api_url() -> str:
    """Get the API URL from environment or default."""
    return os.environ.get("FAIRSLIDE_API_URL", DEFAULT_API_URL)


def get_cookie_file() -> str:
    """Get the path of the CLI cookie jar from environment or default."""
    return os.path.expanduser(os.environ.get("FAIRSLIDE_COOKIE_FILE", DEFAULT_COOKIE_FILE))


def load_http_session() -> requests.Session:
    """
    HTTP session carrying the cookies of earlier CLI calls.

    The service keys selection state by a session cookie, so successive
    `fairslide next` calls continue the same viewer session.
    """
    http = requests.Session()
    path = get_cookie_file()
    if not os.path.exists(path):
        return http

    try:
        with open(path, 'r') as f:
            cookies = json.load(f)
        if isinstance(cookies, dict):
            http.cookies.update(requests.utils.cookiejar_from_dict(cookies))
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read cookie file {path}: {e}")
    return http


def save_http_session(http: requests.Session) -> None:
    """Store the session cookies for the next CLI call."""
    path = get_cookie_file()
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, 'w') as f:
            json.dump(requests.utils.dict_from_cookiejar(http.cookies), f)
    except OSError as e:
        logger.debug(f"Could not write cookie file {path}: {e}")


def api_call(endpoint: str, method: str = "GET", data: dict = None) -> dict:
    """
    Make an API call to the FairSlide service.

    Args:
        endpoint: API endpoint (e.g., "/api/status").
        method: HTTP method.
        data: JSON data to send.

    Returns:
        Response as dict.
    """
    url = f"{get_api_url()}{endpoint}"
    http = load_http_session()

    try:
        if method == "GET":
            response = http.get(url, timeout=5)
        elif method == "POST":
            response = http.post(url, json=data, timeout=5)
        elif method == "DELETE":
            response = http.delete(url, timeout=5)
        else:
            raise ValueError(f"Unknown method: {method}")

        save_http_session(http)
        return response.json()

    except requests.exceptions.ConnectionError:
        print("Error: Could not connect to FairSlide service.")
        print(f"Make sure FairSlide is running and accessible at {get_api_url()}")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_status(args):
    """Show current status."""
    status = api_call("/api/status")

    print("FairSlide Status")
    print("=" * 40)
    print(f"Config: {status.get('config_path') or 'defaults'}")
    print(f"Playlists: {status.get('playlists', 0)}")
    print(f"Index directory: {status.get('index_directory', '')}")
    print(f"Active viewers: {status.get('viewers', 0)}")


def cmd_next(args):
    """Ask the service for the next photo."""
    result = api_call("/api/next")
    if "error" in result:
        print(f"Error: {result['error']}")
        return

    print(result["photo_path"])
    print(f"  {result['display_label']} ({result['display_month']} {result['display_year']})")

    geo = result.get("geo") or {}
    place = geo.get("village") or geo.get("town") or geo.get("city")
    if place or geo.get("country"):
        print(f"  {', '.join(p for p in (place, geo.get('country')) if p)}")


def cmd_trigger(args):
    """Start a background geolocation pass on the service."""
    result = api_call("/api/geolocation/process", "POST")
    if not result.get("success"):
        print(f"Error: {result.get('error', 'Unknown error')}")
    elif result.get("triggered"):
        print("Geolocation processing started")
    else:
        print("Geolocation processing already running")


def print_status_report(report: dict) -> None:
    """Print a per-index geolocation report."""
    files = report.get("files", {})
    if not files:
        print("No picture index files found")
        return

    print(f"{'Index file':<56} {'Total':>6} {'Done':>6} {'No GPS':>7} {'Pending':>8} {'%':>6}")
    for name, status in sorted(files.items()):
        print(
            f"{name:<56} {status['total_photos']:>6} {status['geocoded']:>6} "
            f"{status['no_gps']:>7} {status['pending']:>8} {status['percent_complete']:>6}"
        )

    total = report.get("total", {})
    print("-" * 93)
    print(
        f"{'Total':<56} {total.get('total_photos', 0):>6} {total.get('geocoded', 0):>6} "
        f"{total.get('no_gps', 0):>7} {total.get('pending', 0):>8} "
        f"{total.get('percent_complete', 0.0):>6}"
    )


def cmd_geolocate(args):
    """Run geolocation passes over the local index directory."""
    from .config import load_config
    from .enrichment import collect_status, run_geolocation
    from .geocoder import reverse_geocode

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    config = load_config(args.config)
    base_dir = args.index_dir or config.storage.index_directory

    if not os.path.isdir(base_dir):
        print(f"Error: Index directory does not exist: {base_dir}")
        return 1

    if args.status:
        report = collect_status(base_dir)
        if args.json:
            print(json.dumps(report, indent=2))
        else:
            print_status_report(report)
        return 0

    stop_event = threading.Event()
    try:
        run_geolocation(
            base_dir,
            batch_size=args.batch_size,
            delay_ms=args.delay,
            continuous=args.continuous,
            interval=args.interval,
            stop_event=stop_event,
            geocode=partial(reverse_geocode, user_agent=config.geolocation.user_agent),
        )
    except KeyboardInterrupt:
        stop_event.set()
        print("Interrupted")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="FairSlide - Fair-rotation photo slideshow control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fairslide status                 Show service status
  fairslide next                   Show which photo comes next
  fairslide trigger                Start background geolocation
  fairslide geolocate --status     Show geolocation progress
  fairslide geolocate --continuous Geolocate until interrupted
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Service commands
    subparsers.add_parser("status", help="Show current status")
    subparsers.add_parser("next", help="Select the next photo")
    subparsers.add_parser("trigger", help="Start background geolocation on the service")

    # Local geolocation
    geolocate = subparsers.add_parser("geolocate", help="Geolocate photos in the index directory")
    geolocate.add_argument("-c", "--config", help="Path to configuration file")
    geolocate.add_argument("--index-dir", help="Index directory (overrides the config)")
    geolocate.add_argument("--batch-size", type=int, default=10,
                           help="Photos per index file per pass (default: 10)")
    geolocate.add_argument("--delay", type=int, default=2000,
                           help="Delay between geocoding requests in ms (default: 2000)")
    geolocate.add_argument("--continuous", action="store_true",
                           help="Keep running passes until interrupted")
    geolocate.add_argument("--interval", type=int, default=60,
                           help="Seconds between passes in continuous mode (default: 60)")
    geolocate.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    geolocate.add_argument("--status", action="store_true",
                           help="Print geolocation progress and exit")
    geolocate.add_argument("--json", action="store_true", help="Print the status report as JSON")

    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "next": cmd_next,
        "trigger": cmd_trigger,
        "geolocate": cmd_geolocate,
    }

    if args.command in commands:
        return commands[args.command](args) or 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
