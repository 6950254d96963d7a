#!/usr/bin/env python3
"""Tianyi/ZTE gateway auto-reboot daemon - log in and reboot on a cron schedule"""

import argparse
import logging
import math
import os
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from croniter import croniter

from tianyi_router_client import (
    RouterConfig,
    RunOutcome,
    build_client,
    build_url,
    run_cycle,
    validate_base_url,
)

log = logging.getLogger('tianyi_auto')

DEFAULT_CRON = '0 4 * * Mon'


class Colors:
    GREEN = '\033[92m'; RED = '\033[91m'; BLUE = '\033[94m'
    YELLOW = '\033[93m'; CYAN = '\033[96m'; RESET = '\033[0m'; BOLD = '\033[1m'

    @staticmethod
    def disable():
        for attr in ['GREEN', 'RED', 'BLUE', 'YELLOW', 'CYAN', 'RESET', 'BOLD']:
            setattr(Colors, attr, '')

if not sys.stderr.isatty():
    Colors.disable()


class ColorFormatter(logging.Formatter):
    """Colorize the level name; message text is left untouched."""

    def format(self, record: logging.LogRecord) -> str:
        color = {
            logging.DEBUG: Colors.CYAN,
            logging.INFO: Colors.GREEN,
            logging.WARNING: Colors.YELLOW,
            logging.ERROR: Colors.RED,
            logging.CRITICAL: Colors.BOLD + Colors.RED,
        }.get(record.levelno, '')
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{Colors.RESET}"
        return super().format(record)


def setup_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColorFormatter(
        '%(asctime)s %(levelname)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler], force=True)
    # urllib3 connection chatter only when asked for
    logging.getLogger('urllib3').setLevel(logging.DEBUG if verbose else logging.WARNING)


class InvalidCronExpression(ValueError):
    pass


class ScheduleExhausted(RuntimeError):
    """The cron expression has no occurrence after the current time."""


def local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass(frozen=True)
class ScheduleSpec:
    expression: str
    run_now: bool = False

    @classmethod
    def parse(cls, expression: str, run_now: bool = False) -> 'ScheduleSpec':
        expression = expression.strip()
        if not croniter.is_valid(expression):
            raise InvalidCronExpression(f"invalid cron expression {expression!r}")
        return cls(expression, run_now)

    def next_after(self, now: datetime) -> Optional[datetime]:
        """Next trigger strictly after ``now``, or None when the expression never fires again."""
        try:
            it = croniter(self.expression, now)
            candidate = it.get_next(datetime)
            while candidate <= now:
                candidate = it.get_next(datetime)
        # croniter gives up with CroniterBadDateError (a ValueError); past datetime.max it overflows
        except (ValueError, OverflowError):
            return None
        return candidate


def clamp_wait(delta: timedelta) -> float:
    """Seconds to sleep for ``delta``; negative or non-finite waits become zero."""
    try:
        seconds = delta.total_seconds()
    except OverflowError:
        return 0.0
    if not math.isfinite(seconds) or seconds < 0:
        return 0.0
    return seconds


class Scheduler:
    """Run one login/reboot cycle per cron occurrence, forever.

    Cycles run strictly one after another on the calling thread. The next
    trigger is always computed from the current wall clock, so a late or
    failed run never shifts later ones.
    """

    def __init__(self, spec: ScheduleSpec, client, config: RouterConfig,
                 clock: Callable[[], datetime] = local_now,
                 sleep: Callable[[float], None] = time.sleep,
                 cycle: Optional[Callable] = None):
        self.spec = spec
        self.client = client
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.cycle = cycle or run_cycle
        self.next_run: Optional[datetime] = None

    def run_once(self, label: str = 'Scheduled') -> RunOutcome:
        outcome = self.cycle(self.client, self.config)
        self._report(outcome, label)
        return outcome

    def step(self) -> RunOutcome:
        now = self.clock()
        next_run = self.spec.next_after(now)
        if next_run is None:
            raise ScheduleExhausted(f"cron expression {self.spec.expression!r} produced no future times after {now}")
        self.next_run = next_run

        wait = clamp_wait(next_run - now)
        log.info("Next run at %s (in %.1f minutes)", next_run.isoformat(sep=' '), wait / 60.0)
        self.sleep(wait)
        return self.run_once()

    def serve_forever(self) -> None:
        if self.spec.run_now:
            log.info("Running immediately due to --run-now")
            self.run_once('Immediate')
        while True:
            self.step()

    def _report(self, outcome: RunOutcome, label: str) -> None:
        if outcome.ok:
            log.info("✅ %s run completed (%s)", label, outcome.describe())
        else:
            log.error("❌ %s run failed: %s", label, outcome.describe())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='tianyi-auto',
        description='Login then reboot Tianyi/ZTE router on a cron schedule',
    )
    parser.add_argument('--password', default=os.environ.get('ROUTER_PASSWORD'),
                        help='Router password (env: ROUTER_PASSWORD)')
    parser.add_argument('--username', default='useradmin', help='Router username')
    parser.add_argument('--host', default='http://192.168.1.1', help='Router base URL (with scheme)')
    parser.add_argument('--login-path', default='/', help='Login path')
    parser.add_argument('--reboot-path', default='/common_page/gatewayManage.lua', help='Reboot path')
    parser.add_argument('--reboot-referer', default='/common_page/main.lp', help='Referer for reboot')
    parser.add_argument('--login-token', default='5', help='Login token value')
    parser.add_argument('--frashnum', default='', help='frashnum value')
    parser.add_argument('--reboot-timestamp', default=True, action=argparse.BooleanOptionalAction,
                        help='Add timestamp query param on reboot')
    parser.add_argument('--timeout-secs', type=float, default=10, help='Request timeout seconds')
    parser.add_argument('--cron', default=DEFAULT_CRON,
                        help=f'Cron expression for scheduled runs (local time). Default: {DEFAULT_CRON}')
    parser.add_argument('--run-now', action='store_true', help='Run once immediately on start')
    parser.add_argument('--once', action='store_true', help='Run a single cycle and exit')
    parser.add_argument('--insecure', action='store_true', help='Skip TLS certificate verification')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    args = parser.parse_args(argv)
    if not args.password:
        parser.error('a password is required (--password or ROUTER_PASSWORD)')
    return args


def build_config(args: argparse.Namespace) -> RouterConfig:
    base = validate_base_url(args.host)
    return RouterConfig(
        login_url=build_url(base, args.login_path),
        reboot_url=build_url(base, args.reboot_path),
        reboot_referer=build_url(base, args.reboot_referer),
        username=args.username,
        password=args.password,
        login_token=args.login_token,
        frashnum=args.frashnum,
        add_timestamp=args.reboot_timestamp,
    )


def _handle_exit(signum, frame) -> None:
    log.info("Received signal %s, exiting...", signal.Signals(signum).name)
    sys.exit(0)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
        spec = ScheduleSpec.parse(args.cron, run_now=args.run_now)
        client = build_client(args.timeout_secs, verify=not args.insecure)
    except ValueError as e:
        log.error("Fatal configuration error: %s", e)
        return 2

    log.info("tianyi-auto targeting %s as %s, cron %r", config.login_url, config.username, spec.expression)
    scheduler = Scheduler(spec, client, config)
    try:
        if args.once:
            return 0 if scheduler.run_once('One-shot').ok else 1

        signal.signal(signal.SIGTERM, _handle_exit)
        scheduler.serve_forever()
    except ScheduleExhausted as e:
        log.error("Fatal schedule error: %s", e)
        return 2
    finally:
        client.close()
    return 0


def cli() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Operation cancelled{Colors.RESET}", file=sys.stderr)
        sys.exit(130)


if __name__ == '__main__':
    cli()
