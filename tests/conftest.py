"""Shared fixtures: a fake gateway mounted as a requests transport adapter."""

from __future__ import annotations

from typing import Dict, List, Optional
from urllib.parse import urlsplit

import pytest
from requests import PreparedRequest, Response
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from tianyi_router_client import RouterConfig, RouterSession, build_client

LOGIN_URL = 'http://192.168.1.1/'
REBOOT_URL = 'http://192.168.1.1/common_page/gatewayManage.lua'
REFERER_URL = 'http://192.168.1.1/common_page/main.lp'


class FakeGateway(BaseAdapter):
    """Answers requests by URL path from queued replies (default: 200, no cookies)."""

    def __init__(self) -> None:
        super().__init__()
        self.session: Optional[RouterSession] = None
        self.requests: List[PreparedRequest] = []
        self.timeouts: list = []
        self.verify: list = []
        self._replies: Dict[str, list] = {}

    def reply(self, path: str, status: int = 200, cookies: Optional[Dict[str, str]] = None,
              error: Optional[Exception] = None) -> None:
        self._replies.setdefault(path, []).append((status, cookies or {}, error))

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        self.verify.append(verify)

        parts = urlsplit(request.url)
        pending = self._replies.get(parts.path)
        status, cookies, error = pending.pop(0) if pending else (200, {}, None)
        if error is not None:
            raise error

        response = Response()
        response.status_code = status
        response.url = request.url
        response.request = request
        response.headers = CaseInsensitiveDict({'Content-Type': 'text/html'})
        response._content = b''
        response.encoding = 'utf-8'
        for name, value in cookies.items():
            response.cookies.set(name, value, domain=parts.hostname, path='/')
            # what HTTPAdapter does with Set-Cookie on a real socket
            if self.session is not None:
                self.session.cookies.set(name, value, domain=parts.hostname, path='/')
        return response

    def close(self) -> None:
        pass

    def paths(self) -> List[str]:
        return [urlsplit(r.url).path for r in self.requests]

    def reboot_calls(self) -> List[PreparedRequest]:
        return [r for r in self.requests if urlsplit(r.url).path == urlsplit(REBOOT_URL).path]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(gateway: FakeGateway) -> RouterSession:
    session = build_client(10)
    session.mount('http://', gateway)
    session.mount('https://', gateway)
    gateway.session = session
    return session


@pytest.fixture
def config() -> RouterConfig:
    return RouterConfig(
        login_url=LOGIN_URL,
        reboot_url=REBOOT_URL,
        reboot_referer=REFERER_URL,
        username='useradmin',
        password='s3cret',
        login_token='5',
        frashnum='',
        add_timestamp=True,
    )
