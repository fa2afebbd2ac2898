"""Command line front end for the workout calendar data core."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from typing import List, Optional, Sequence, Tuple

from .calendar_merge import load_calendar, month_bounds
from .errors import (
    HevyNotConfiguredError,
    NoCredentialError,
    WorkoutCalendarError,
)
from .hevy_client import HevyService
from .oauth import complete_authorization, parse_redirect, start_oauth_flow
from .strava_client import StravaService
from .utils import parse_date

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_AUTH_REQUIRED = 2


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _iso_date(value: str) -> date:
    try:
        return parse_date(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def build_services() -> Tuple[StravaService, HevyService]:
    return StravaService.from_config(), HevyService.from_config()


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="workout_calendar",
        description="Running (Strava) and gym (Hevy) workout dates",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    dates = sub.add_parser("dates", help="Print workout dates in a range")
    dates.add_argument(
        "--start", required=True, type=_iso_date, help="YYYY-MM-DD (inclusive)"
    )
    dates.add_argument(
        "--end", required=True, type=_iso_date, help="YYYY-MM-DD (inclusive)"
    )
    dates.add_argument(
        "--source", choices=("strava", "hevy", "all"), default="all"
    )

    today = date.today()
    month = sub.add_parser("month", help="Print the merged calendar for one month")
    month.add_argument("--year", type=int, default=today.year)
    month.add_argument("--month", type=int, default=today.month)

    usage = sub.add_parser("usage", help="Show Strava API usage")
    usage.add_argument(
        "--probe", action="store_true", help="Issue one request to refresh the numbers"
    )

    sub.add_parser("scope", help="Check that the Strava grant can read activities")

    refresh = sub.add_parser("refresh", help="Drop cached data")
    refresh.add_argument(
        "--hevy", action="store_true", help="Also refetch the Hevy workout cache"
    )

    sub.add_parser("logout", help="Forget Strava tokens and cached activities")

    authorize = sub.add_parser("authorize", help="Connect a Strava account")
    authorize.add_argument("--code", help="Exchange an authorisation code directly")
    authorize.add_argument(
        "--redirect-url", help="Redirect URL received from a browser flow"
    )
    authorize.add_argument(
        "--timeout",
        type=int,
        default=120,
        help="Seconds to wait for browser authorisation",
    )
    authorize.add_argument(
        "--no-browser", action="store_true", help="Print the URL instead of opening it"
    )

    seed = sub.add_parser(
        "set-refresh-token", help="Store an existing Strava refresh token"
    )
    seed.add_argument("token")
    return parser.parse_args(argv)


def _print_dates(label: str, dates: List[str]) -> None:
    print(f"{label}: {len(dates)}")
    for day in dates:
        print(f"  {day}")


def _run(args: argparse.Namespace, strava: StravaService, hevy: HevyService) -> int:
    if args.command == "dates":
        start, end = args.start, args.end
        if args.source in ("strava", "all"):
            _print_dates("running", strava.get_running_dates(start, end))
        if args.source in ("hevy", "all"):
            if hevy.is_configured():
                _print_dates("gym", hevy.get_workout_dates(start, end))
            elif args.source == "hevy":
                raise HevyNotConfiguredError("Hevy API key not configured")
        return EXIT_OK

    if args.command == "month":
        start, end = month_bounds(args.year, args.month)
        marks = load_calendar(start, end, strava=strava, hevy=hevy)
        for day, mark in marks.items():
            kinds = [k for k, on in (("running", mark.running), ("gym", mark.gym)) if on]
            print(f"{day}  {' + '.join(kinds)}")
        return EXIT_OK

    if args.command == "usage":
        usage = strava.check_api_usage(probe=args.probe)
        if usage is None:
            print("No Strava API usage observed yet")
            return EXIT_OK
        print(f"usage: {usage.usage if usage.usage is not None else '?'}")
        print(f"limit: {usage.limit if usage.limit is not None else '?'}")
        if usage.last_rate_limit_time is None:
            print("last rate limit: none")
        else:
            remaining = strava.rate_limit_cooldown()
            minutes = int(remaining.total_seconds() // 60)
            status = f"{minutes} min until reset" if minutes > 0 else "reset complete"
            print(
                f"last rate limit: {usage.last_rate_limit_time.isoformat()} ({status})"
            )
        return EXIT_OK

    if args.command == "scope":
        ok = strava.check_token_scope()
        print("Strava grant OK" if ok else "Strava not connected or missing scope")
        return EXIT_OK if ok else EXIT_AUTH_REQUIRED

    if args.command == "refresh":
        strava.force_refresh()
        if args.hevy and hevy.is_configured():
            workouts = hevy.refresh_cache()
            print(f"Refetched {len(workouts)} Hevy workouts")
        print("Caches cleared")
        return EXIT_OK

    if args.command == "logout":
        strava.clear_all_tokens()
        print("Disconnected from Strava")
        return EXIT_OK

    if args.command == "authorize":
        if args.code:
            strava.exchange_authorization_code(args.code)
        elif args.redirect_url:
            complete_authorization(strava, parse_redirect(args.redirect_url))
        else:
            start_oauth_flow(
                strava, wait_timeout=args.timeout, open_browser=not args.no_browser
            )
        print("Strava authentication successful")
        return EXIT_OK

    if args.command == "set-refresh-token":
        strava.seed_refresh_token(args.token)
        print("Refresh token stored")
        return EXIT_OK

    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    strava, hevy = build_services()
    try:
        return _run(args, strava, hevy)
    except NoCredentialError as exc:
        logging.error("%s", exc)
        print("Strava authorisation required: run 'authorize' first", file=sys.stderr)
        return EXIT_AUTH_REQUIRED
    except WorkoutCalendarError as exc:
        logging.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
