"""Shared fakes: a scripted stand-in for requests.Session and its responses."""

import json

import pytest
import requests
from requests.cookies import RequestsCookieJar

import uom_auth
from uom_auth import (
    PORTAL_HOST,
    PORTAL_URL,
    PROFILES_PATH,
    SSO_URL,
    STUDENT_DATA_PATH,
    SessionCache,
)

LOGIN_PAGE_URL = f'{SSO_URL}?service=https%3A%2F%2Fsis-portal.uom.gr%2Flogin%2Fcas'

LOGIN_PAGE = """
<html><body>
<form id="fm1" method="post">
  <input type="text" name="username">
  <input type="password" name="password">
  <input type="hidden" name="execution" value="e1s1-token">
  <input type="hidden" name="lt" value="LT-42">
  <input type="hidden" name="_eventId" value="submit">
</form>
</body></html>
"""

PORTAL_PAGE_TEMPLATE = """
<html><head>
<meta name="_csrf_header" content="X-CSRF-TOKEN">
<meta name="_csrf" content="{csrf}">
</head><body></body></html>
"""
PORTAL_PAGE = PORTAL_PAGE_TEMPLATE.format(csrf='csrf-123')

PROFILES = {'data': {'profiles': [{'id': 777, 'type': 'STUDENT'}, {'id': 778}]}}
STUDENT = {'firstname': 'Alex', 'lastname': 'Johnson', 'studentNo': 'ics24130'}


class FakeResponse:
    def __init__(self, url, text='', status_code=200):
        self.url = url
        self.text = text
        self.status_code = status_code
        self.history = []
        self.headers = {}

    def json(self):
        return json.loads(self.text)


class FakeHttp:
    """Answers get/post from a routing table keyed by (method, url)."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.cookies = RequestsCookieJar()
        self.headers = {}
        self.calls = []

    def _handle(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        route = self.routes.get((method, url))
        if route is None:
            raise requests.ConnectionError(f'no route for {method} {url}')
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(self, kwargs)
        return route

    def get(self, url, **kwargs):
        return self._handle('GET', url, kwargs)

    def post(self, url, **kwargs):
        return self._handle('POST', url, kwargs)


def _accept_login(http, kwargs):
    http.cookies.set('SESSION', 'abc', domain=PORTAL_HOST, path='/')
    return FakeResponse(f'{PORTAL_URL}/')


def happy_routes(csrf='csrf-123', profiles=PROFILES):
    return {
        ('GET', PORTAL_URL): FakeResponse(f'{PORTAL_URL}/', PORTAL_PAGE_TEMPLATE.format(csrf=csrf)),
        ('GET', SSO_URL): FakeResponse(LOGIN_PAGE_URL, LOGIN_PAGE),
        ('POST', SSO_URL): _accept_login,
        ('GET', f'{PORTAL_URL}{PROFILES_PATH}'): FakeResponse(f'{PORTAL_URL}{PROFILES_PATH}', json.dumps(profiles)),
        ('GET', f'{PORTAL_URL}{STUDENT_DATA_PATH}'): FakeResponse(
            f'{PORTAL_URL}{STUDENT_DATA_PATH}', json.dumps(STUDENT)
        ),
    }


@pytest.fixture
def http(monkeypatch):
    """Every session created by uom_auth during the test is this FakeHttp."""
    fake = FakeHttp(happy_routes())
    monkeypatch.setattr(uom_auth, 'create_session', lambda: fake)
    return fake


@pytest.fixture
def cache(tmp_path):
    return SessionCache(tmp_path / 'uom' / 'session.json', verbose=False)
