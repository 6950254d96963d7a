#!/usr/bin/env python3
"""Tianyi/ZTE gateway client - form login followed by the reboot RPC"""

import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, Union
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import requests
import urllib3
from requests.exceptions import InvalidURL
from requests.utils import requote_uri

log = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36'
    ),
    'Accept': (
        'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,'
        'image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7'
    ),
    'Accept-Language': 'zh-CN,zh;q=0.9,en;q=0.8',
    'Cache-Control': 'no-cache',
    'Connection': 'keep-alive',
    'Pragma': 'no-cache',
}
MAX_REDIRECTS = 4

REBOOT_PAYLOAD = {'RPCMethod': 'Post', 'Parameter': {'CmdType': 'HG_COMMAND_REBOOT'}}
REBOOT_ACCEPT = 'application/json, text/javascript, */*; q=0.01'


class RouterSession(requests.Session):
    """Cookie-keeping session that applies a default timeout to every request."""

    def __init__(self, timeout: float):
        super().__init__()
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        kwargs.setdefault('timeout', self.timeout)
        return super().request(method, url, **kwargs)


def build_client(timeout_secs: float, verify: bool = True) -> RouterSession:
    """Create the persistent HTTP client shared by every cycle."""
    if not math.isfinite(timeout_secs) or timeout_secs <= 0:
        raise ValueError(f"timeout must be a positive number of seconds, got {timeout_secs!r}")

    session = RouterSession(timeout_secs)
    session.headers.update(DEFAULT_HEADERS)
    session.max_redirects = MAX_REDIRECTS
    session.verify = verify
    if not verify:
        # Gateways ship self-signed certificates
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    return session


def validate_base_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in ('http', 'https') or not parts.hostname:
        raise InvalidURL(f"invalid URL {url!r}: expected http(s)://host[:port]")
    return url


def build_url(base: str, path: str) -> str:
    """Resolve a configured path against the router base URL; absolute URLs pass through.

    The result is percent-encoded so it is safe to send as a header value.
    """
    if not path.startswith(('http://', 'https://')):
        path = urljoin(base, path)
    return validate_base_url(requote_uri(path))


def origin_of(url: str) -> str:
    """Return scheme://host[:port] with path, query, fragment and credentials dropped."""
    parts = urlsplit(url)
    host = parts.hostname or ''
    if ':' in host:
        host = f'[{host}]'
    if parts.port is not None:
        host = f'{host}:{parts.port}'
    return f'{parts.scheme}://{host}'


def with_timestamp(url: str, millis: int) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(('timeStamp', str(millis)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class RouterConfig:
    login_url: str
    reboot_url: str
    reboot_referer: str
    username: str
    password: str = field(repr=False)
    login_token: str = '5'
    frashnum: str = ''
    add_timestamp: bool = True


# Cycle outcomes. run_cycle returns one of these and never raises, so the
# scheduler loop only ever logs them.

@dataclass(frozen=True)
class CycleSucceeded:
    login_status: int
    reboot_status: int
    ok = True

    def describe(self) -> str:
        return f"login HTTP {self.login_status}, reboot HTTP {self.reboot_status}"


@dataclass(frozen=True)
class LoginFailed:
    status: int
    ok = False

    def describe(self) -> str:
        return f"login failed with status {self.status}"


@dataclass(frozen=True)
class RebootFailed:
    status: int
    ok = False

    def describe(self) -> str:
        return f"reboot request returned {self.status}"


@dataclass(frozen=True)
class TransportError:
    phase: str
    cause: Exception
    ok = False

    def describe(self) -> str:
        return f"{self.phase} request failed: {type(self.cause).__name__}: {self.cause}"


RunOutcome = Union[CycleSucceeded, LoginFailed, RebootFailed, TransportError]


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _transport_error(phase: str, e: Exception) -> TransportError:
    if not isinstance(e, requests.RequestException):
        log.debug("unexpected %s failure", phase, exc_info=e)
    return TransportError(phase, e)


def login(client: requests.Session, cfg: RouterConfig) -> requests.Response:
    """POST the login form. Raises RequestException on transport failure."""
    form = {
        'frashnum': cfg.frashnum,
        'action': 'login',
        'Frm_Logintoken': cfg.login_token,
        'user_name': cfg.username,
        'Password': cfg.password,
    }
    headers = {
        'Content-Type': 'application/x-www-form-urlencoded',
        'Origin': origin_of(cfg.login_url),
        'Upgrade-Insecure-Requests': '1',
        'Referer': cfg.login_url,
    }
    log.debug("POST %s (login as %s)", cfg.login_url, cfg.username)
    response = client.post(cfg.login_url, data=form, headers=headers)
    log.debug("login status=%s", response.status_code)
    return response


def reboot(client: requests.Session, cfg: RouterConfig) -> requests.Response:
    """POST the reboot RPC wrapped in the jsonCfg form field."""
    url = cfg.reboot_url
    if cfg.add_timestamp:
        url = with_timestamp(url, epoch_millis())

    payload = json.dumps(REBOOT_PAYLOAD, separators=(',', ':'))
    headers: Dict[str, str] = {
        'Content-Type': 'application/x-www-form-urlencoded; charset=UTF-8',
        'X-Requested-With': 'XMLHttpRequest',
        'Accept': REBOOT_ACCEPT,
        'Origin': origin_of(cfg.reboot_url),
        'Referer': cfg.reboot_referer,
    }
    log.debug("POST %s", url)
    response = client.post(url, data={'jsonCfg': payload}, headers=headers)
    log.debug("reboot status=%s", response.status_code)
    return response


def run_cycle(client: requests.Session, cfg: RouterConfig) -> RunOutcome:
    """Log in, then reboot. Only HTTP status codes decide success."""
    try:
        login_resp = login(client, cfg)
    except Exception as e:
        return _transport_error('login', e)

    if not _is_success(login_resp.status_code):
        return LoginFailed(login_resp.status_code)

    if len(login_resp.cookies) == 0:
        log.warning("No cookies received from login; device may still accept commands without cookie.")
    else:
        log.debug("Login cookies captured: %s", ', '.join(sorted(login_resp.cookies.keys())))
    log.info("Login request sent.")

    try:
        reboot_resp = reboot(client, cfg)
    except Exception as e:
        return _transport_error('reboot', e)

    if not _is_success(reboot_resp.status_code):
        return RebootFailed(reboot_resp.status_code)

    log.info("🔄 Reboot command dispatched.")
    return CycleSucceeded(login_resp.status_code, reboot_resp.status_code)
