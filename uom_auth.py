#!/usr/bin/env python3
# /// script
# dependencies = [
#   "requests",
#   "beautifulsoup4",
#   "python-dotenv",
# ]
# ///
"""
UoM SIS Portal Authentication Module

Handles programmatic authentication to the University of Macedonia student
portal (sis-portal.uom.gr), which is protected by the university's CAS single
sign-on (sso.uom.gr). The CAS form is driven with plain requests, the portal's
anti-forgery token and the student profile id are scraped once per login, and
the resulting session is cached on disk so later runs can skip the handshake.

Usage:
    from uom_auth import AuthSessionManager

    manager = AuthSessionManager()
    student = manager.restore()          # or manager.login(username, password)
    # manager.snapshot() is now ready for API calls to sis-portal.uom.gr
"""

from __future__ import annotations

import getpass
import json
import os
import shutil
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv
from requests.adapters import HTTPAdapter
from requests.cookies import RequestsCookieJar, get_cookie_header
from urllib3.util.retry import Retry

# Settings below read UOM_* variables, so .env has to be loaded first
load_dotenv()


# Debug log file - captures full request/response details of the CAS handshake
DEBUG_LOG_FILE = Path('auth_debug.log')

# Header and form fields that must never reach the debug log in clear text
MASKED_FIELDS = {'password', 'x-csrf-token', 'cookie'}


def _mask(mapping: dict) -> dict:
    return {k: ('***MASKED***' if str(k).lower() in MASKED_FIELDS else v) for k, v in mapping.items()}


class DebugLogger:
    """Writes request/response traces of the login flow to a file."""

    def __init__(self, filepath: Path = DEBUG_LOG_FILE):
        self.filepath = filepath
        self.enabled = False
        self._file = None

    def enable(self):
        self.enabled = True
        self._file = open(self.filepath, 'w', encoding='utf-8')
        self._write('=== UoM CAS Login Debug Log ===')
        self._write(f'Started: {datetime.now().isoformat()}')

    def disable(self):
        if self._file:
            self._file.close()
            self._file = None
        self.enabled = False

    def _write(self, text: str):
        if self._file:
            self._file.write(text + '\n')
            self._file.flush()

    def log_section(self, title: str):
        if not self.enabled:
            return
        self._write('')
        self._write(f'----- {title} -----')

    def log_cookies(self, session: requests.Session, label: str = 'Cookies'):
        if not self.enabled:
            return
        self._write(f'[{label}]')
        for cookie in session.cookies:
            self._write(f'  {cookie.domain}{cookie.path} {cookie.name} ({len(cookie.value or "")} chars)')

    def log_request(self, method: str, url: str, headers: dict | None = None, form: dict | None = None):
        if not self.enabled:
            return
        self._write(f'>>> {method} {url}')
        for k, v in _mask(headers or {}).items():
            self._write(f'  {k}: {v}')
        if form:
            self._write(f'  form: {json.dumps(_mask(form))}')

    def log_response(self, response: requests.Response):
        if not self.enabled:
            return
        for i, hop in enumerate(response.history):
            self._write(f'  redirect {i + 1}: {hop.status_code} {hop.url} -> {hop.headers.get("Location", "N/A")}')
        self._write(f'<<< {response.status_code} {response.url}')
        body = response.text or ''
        self._write(body[:1000] + ('... [truncated]' if len(body) > 1000 else ''))


# Global debug logger instance
debug_log = DebugLogger()


# Fixed CAS provider and portal endpoints
SSO_URL = 'https://sso.uom.gr/login'
CAS_HOST = 'sso.uom.gr'
PORTAL_URL = 'https://sis-portal.uom.gr'
PORTAL_HOST = 'sis-portal.uom.gr'
SERVICE_URL = 'https://sis-portal.uom.gr/login/cas'
PROFILES_PATH = '/api/person/profiles'
STUDENT_DATA_PATH = '/feign/student/student_data'

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36'
)

# (connect, read) seconds - every request is bounded so a hung provider cannot stall us
REQUEST_TIMEOUT = (10, 30)

# Where session.json, settings.json and the grades cache live (override via .env)
DATA_DIR = Path(os.environ.get('UOM_DATA_DIR', str(Path.home() / '.cache' / 'uom-grades')))

# 1Password item name for credentials (can be overridden via .env or environment variable)
ONEPASSWORD_ITEM = os.environ.get('ONEPASSWORD_ITEM', 'UoM SIS')


# ── Errors ──────────────────────────────────────────────────────────


class PortalError(RuntimeError):
    """Base class for everything that can go wrong talking to the portal."""


class TransportError(PortalError):
    """The host could not be reached or the connection broke."""


class AuthError(PortalError):
    """Login failed."""


class PortalUnreachable(AuthError, TransportError):
    pass


class CasUnreachable(AuthError, TransportError):
    pass


class TokenMissing(AuthError):
    """An expected hidden form field or meta tag was not in the page."""


class InvalidCredentials(AuthError):
    def __init__(self, final_url: str):
        super().__init__(f'Invalid username or password (ended at {final_url})')
        self.final_url = final_url


class NoProfile(AuthError):
    def __init__(self, payload: Any):
        raw = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        super().__init__(f'No student profiles found in: {raw}')
        self.payload = payload


class RestoreError(PortalError):
    """A cached session could not be brought back."""


class NoSavedSession(RestoreError):
    pass


class CorruptSession(RestoreError):
    pass


class EmptySession(RestoreError):
    pass


class SessionExpired(RestoreError):
    pass


class ApiError(PortalError):
    """An authenticated API call failed."""


class NotAuthenticated(ApiError):
    pass


class RequestFailed(ApiError, TransportError):
    pass


class InvalidResponse(ApiError):
    pass


# ── Markup and JSON helpers ─────────────────────────────────────────


def _input_value(soup: BeautifulSoup, name: str) -> str | None:
    field = soup.find('input', attrs={'name': name})
    if field is None:
        return None
    value = field.get('value')
    return value if isinstance(value, str) else None


def extract_login_tokens(html: str) -> tuple[str, str | None]:
    """
    Pull the hidden CAS form tokens out of the login page.

    Returns (execution, lt). `execution` is mandatory; `lt` is only sent by
    some CAS versions and is None when absent.
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    execution = _input_value(soup, 'execution')
    if execution is None:
        raise TokenMissing('CAS execution token not found')
    return execution, _input_value(soup, 'lt')


def extract_security_token(html: str) -> str:
    """Read the portal's anti-forgery token from <meta name="_csrf" content="...">."""
    soup = BeautifulSoup(html or '', 'html.parser')
    meta = soup.find('meta', attrs={'name': '_csrf'})
    content = meta.get('content') if meta is not None else None
    if not isinstance(content, str):
        raise TokenMissing('CSRF token not found')
    return content


def _own_id(value: Any) -> str | None:
    if not isinstance(value, dict):
        return None
    ident = value.get('id')
    if isinstance(ident, str):
        return ident
    # bool is an int subclass but is not an id
    if isinstance(ident, (int, float)) and not isinstance(ident, bool):
        return str(ident)
    return None


def find_profile_id(value: Any) -> str | None:
    """
    Find the student profile id in a profiles payload of unknown shape.

    Depth-first over object members in document order, preferring a nested
    hit over the object's own `id`. For a list only the first element's own
    `id` is considered.
    """
    if isinstance(value, dict):
        for child in value.values():
            found = find_profile_id(child)
            if found is not None:
                return found
        return _own_id(value)
    if isinstance(value, list):
        return _own_id(value[0]) if value else None
    return None


# ── HTTP session and cookies ────────────────────────────────────────


def create_session() -> requests.Session:
    """Create a requests session with connection pooling and no automatic retries."""
    session = requests.Session()

    adapter = HTTPAdapter(
        max_retries=Retry(total=0),
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount('https://', adapter)

    session.headers.update({
        'User-Agent': USER_AGENT,
        'Accept-Language': 'el-GR,el;q=0.9,en;q=0.8',
    })

    return session


def serialize_cookies(jar: RequestsCookieJar, origin_url: str = PORTAL_URL) -> str:
    """Return the Cookie header the jar would send to origin_url ('' if none)."""
    request = requests.Request('GET', origin_url).prepare()
    return get_cookie_header(jar, request) or ''


def build_session_from_cookies(cookies: str) -> requests.Session:
    """
    Create a fresh session whose jar holds the given 'a=1; b=2' cookies,
    scoped to the portal host and root path.

    Nothing is validated here; a stale cookie is only detected by the portal
    rejecting the next API call.
    """
    session = create_session()
    for part in cookies.split('; '):
        if not part:
            continue
        name, sep, value = part.partition('=')
        if not sep:
            continue
        session.cookies.set(name, value, domain=PORTAL_HOST, path='/')
    return session


# ── Session cache ───────────────────────────────────────────────────


class SessionCache:
    """
    Persists the authenticated portal session to disk for reuse across runs.

    The record holds the portal cookies (as one 'name=value; ...' string), the
    CSRF token and the profile id. It is written after a successful login and
    read once when a run tries to restore instead of logging in.
    """

    CACHE_FILE = DATA_DIR / 'session.json'

    def __init__(self, cache_file: Path | None = None, verbose: bool = True):
        self.cache_file = Path(cache_file) if cache_file else self.CACHE_FILE
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def save(self, portal_cookies: str, csrf: str, profile_id: str) -> None:
        """Save session state to the cache file."""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)

        cache_data = {
            'portal_cookies': portal_cookies,
            'csrf': csrf,
            'profile_id': profile_id,
        }

        self.cache_file.write_text(json.dumps(cache_data, indent=2))
        self.cache_file.chmod(0o600)  # Contains live session cookies
        self._log(f'  Session cached to {self.cache_file}')

    def load(self) -> dict:
        """
        Load the cached session record.

        A corrupt or empty record is deleted before the error is raised; a
        missing file is left alone.
        """
        try:
            raw = self.cache_file.read_bytes()
        except OSError as e:
            raise NoSavedSession('No saved session') from e

        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        try:
            data = json.loads(raw)
        except ValueError as e:
            self.clear()
            raise CorruptSession('Corrupt session file') from e

        required_fields = ('portal_cookies', 'csrf', 'profile_id')
        if not isinstance(data, dict) or not all(isinstance(data.get(f), str) for f in required_fields):
            self.clear()
            raise CorruptSession('Corrupt session file')

        if not data['portal_cookies']:
            self.clear()
            raise EmptySession('Empty session')

        return data

    def clear(self) -> None:
        """Delete the cache file."""
        try:
            self.cache_file.unlink()
        except FileNotFoundError:
            return
        self._log('  Session cache cleared')


# ── Credentials ─────────────────────────────────────────────────────


def is_1password_available() -> bool:
    """Check if the 1Password CLI (op) is installed and available."""
    return shutil.which('op') is not None


def get_credentials_from_env() -> tuple[str, str] | None:
    """Return (username, password) from UOM_USERNAME / UOM_PASSWORD if both are set."""
    username = os.environ.get('UOM_USERNAME', '').strip()
    password = os.environ.get('UOM_PASSWORD', '')
    if username and password:
        return username, password
    return None


def get_credentials_from_prompt() -> tuple[str, str]:
    """
    Prompt the user to enter their credentials manually.

    Returns (username, password) tuple.
    """
    print()
    print('Please enter your UoM SSO credentials:')
    username = input('  Username: ').strip()
    password = getpass.getpass('  Password: ')

    if not username or not password:
        raise ValueError('Username and password are required')

    return username, password


def get_credentials_from_1password(item_name: str = ONEPASSWORD_ITEM) -> tuple[str, str]:
    """
    Retrieve username and password from 1Password using the op CLI.

    Returns (username, password) tuple.
    """
    def read_field(field: str, *extra: str) -> str:
        result = subprocess.run(
            ['op', 'item', 'get', item_name, '--fields', field, *extra],
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    try:
        username = read_field('username')
        password = read_field('password', '--reveal')
    except subprocess.CalledProcessError as e:
        raise RuntimeError(
            f'Failed to get credentials from 1Password: {e.stderr}\n'
            f'Make sure you are signed into 1Password CLI (run: op signin)'
        ) from e

    if not username or not password:
        raise ValueError(f'Empty credentials retrieved from 1Password item "{item_name}"')

    return username, password


def get_credentials(item_name: str = ONEPASSWORD_ITEM, verbose: bool = True) -> tuple[str, str]:
    """
    Get credentials from the environment, then 1Password, then a manual prompt.

    Returns (username, password) tuple.
    """
    from_env = get_credentials_from_env()
    if from_env:
        return from_env

    if is_1password_available():
        if verbose:
            print(f'Getting credentials from 1Password ({item_name})...')
        try:
            return get_credentials_from_1password(item_name)
        except (RuntimeError, ValueError) as e:
            if verbose:
                print(f'  Warning: {e}')
                print('  Falling back to manual credential entry...')

    return get_credentials_from_prompt()


# ── Authenticated API GET ───────────────────────────────────────────


def api_get(session: requests.Session, path: str, csrf: str, profile_id: str) -> Any:
    """
    GET a portal JSON endpoint with the session's CSRF token and profile id.

    The HTTP status is not interpreted; only transport success and a JSON
    body matter.
    """
    try:
        response = session.get(
            f'{PORTAL_URL}{path}',
            headers={
                'X-CSRF-TOKEN': csrf,
                'X-Profile': profile_id,
                'X-Requested-With': 'XMLHttpRequest',
                'Accept': 'application/json',
            },
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise RequestFailed(f'Request failed: {e}') from e

    try:
        return response.json()
    except ValueError as e:
        raise InvalidResponse(f'Invalid JSON: {e}') from e


# ── CAS login steps ─────────────────────────────────────────────────


def open_portal(session: requests.Session) -> str:
    """GET the portal root (sets origin cookies) and return the page body."""
    debug_log.log_section('OPEN PORTAL')
    debug_log.log_request('GET', PORTAL_URL)
    try:
        response = session.get(PORTAL_URL, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise PortalUnreachable(f'Portal unreachable: {e}') from e
    debug_log.log_response(response)
    debug_log.log_cookies(session, 'Cookies after portal')
    return response.text


def load_login_page(session: requests.Session) -> tuple[str, str]:
    """
    Load the CAS login form for the portal service.

    Returns (final_url, html); final_url is used as Referer for the POST.
    """
    debug_log.log_section('LOAD CAS LOGIN PAGE')
    debug_log.log_request('GET', SSO_URL)
    try:
        response = session.get(SSO_URL, params={'service': SERVICE_URL}, timeout=REQUEST_TIMEOUT)
        html = response.text
    except requests.RequestException as e:
        raise CasUnreachable(f'CAS page error: {e}') from e
    debug_log.log_response(response)
    return response.url, html


def submit_credentials(
    session: requests.Session,
    username: str,
    password: str,
    execution: str,
    lt: str | None,
    login_url: str,
) -> str:
    """
    POST the CAS login form and return the final URL after redirects.

    CAS gives no error code for bad credentials; it just renders the form
    again. Landing anywhere other than the CAS host means the ticket was
    issued and the portal accepted it.
    """
    debug_log.log_section('SUBMIT CREDENTIALS')
    form = {
        'username': username,
        'password': password,
        'execution': execution,
        '_eventId': 'submit',
    }
    if lt is not None:
        form['lt'] = lt

    headers = {'Referer': login_url}
    debug_log.log_request('POST', SSO_URL, headers, form)
    try:
        response = session.post(
            SSO_URL,
            params={'service': SERVICE_URL},
            data=form,
            headers=headers,
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise CasUnreachable(f'Login request failed: {e}') from e
    debug_log.log_response(response)
    debug_log.log_cookies(session, 'Cookies after login')

    final_url = response.url
    if urlparse(final_url).hostname == CAS_HOST:
        raise InvalidCredentials(final_url)
    return final_url


def get_security_token(session: requests.Session) -> str:
    """Re-open the now authenticated portal and scrape its CSRF token."""
    return extract_security_token(open_portal(session))


def get_profile_id(session: requests.Session, csrf: str) -> str:
    """Fetch the profile listing and pick the student profile id out of it."""
    debug_log.log_section('FETCH PROFILES')
    url = f'{PORTAL_URL}{PROFILES_PATH}'
    headers = {'X-CSRF-TOKEN': csrf, 'X-Requested-With': 'XMLHttpRequest'}
    debug_log.log_request('GET', url, headers)
    try:
        response = session.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
        body = response.text
    except requests.RequestException as e:
        raise PortalUnreachable(f'Profile request failed: {e}') from e
    debug_log.log_response(response)

    try:
        profiles = json.loads(body)
    except ValueError as e:
        raise NoProfile(body) from e

    profile_id = find_profile_id(profiles)
    if profile_id is None:
        raise NoProfile(profiles)
    return profile_id


@dataclass(frozen=True, slots=True)
class PortalSession:
    """An authenticated portal session: HTTP client, CSRF token and profile id."""

    http: requests.Session
    csrf: str
    profile_id: str

    def get(self, path: str) -> Any:
        return api_get(self.http, path, self.csrf, self.profile_id)


def authenticate(
    username: str, password: str, verbose: bool = True, debug: bool = False
) -> tuple[PortalSession, Any]:
    """
    Perform the full CAS login flow against the UoM portal.

    Args:
        username: UoM SSO username
        password: UoM SSO password
        verbose: Print progress messages to stdout
        debug: Write detailed debug log to auth_debug.log

    Returns (session, student_data). The student data fetch doubles as proof
    that the session works.
    """
    if debug:
        debug_log.enable()
        print(f'  Debug logging enabled: {DEBUG_LOG_FILE}')

    try:
        if verbose:
            print('Authenticating to UoM SIS portal...')

        http = create_session()

        if verbose:
            print('  Opening portal...')
        open_portal(http)

        if verbose:
            print('  Loading CAS login page...')
        login_url, login_html = load_login_page(http)
        execution, lt = extract_login_tokens(login_html)

        if verbose:
            print('  Submitting credentials...')
        submit_credentials(http, username, password, execution, lt, login_url)

        if verbose:
            print('  Reading CSRF token...')
        csrf = get_security_token(http)

        if verbose:
            print('  Resolving student profile...')
        profile_id = get_profile_id(http, csrf)

        session = PortalSession(http, csrf, profile_id)
        student = session.get(STUDENT_DATA_PATH)

        if verbose:
            print('  Authentication successful!')

        return session, student

    finally:
        if debug:
            debug_log.disable()
            print(f'  Debug log written to: {DEBUG_LOG_FILE}')


# ── Session manager ─────────────────────────────────────────────────


class AuthSessionManager:
    """
    Owns the single authenticated session of this process.

    The session slot is guarded by a lock that is only held to read or
    replace the whole PortalSession, never across network I/O.
    """

    def __init__(self, cache: SessionCache | None = None, verbose: bool = True):
        self.verbose = verbose
        self.cache = cache if cache is not None else SessionCache(verbose=verbose)
        self._lock = threading.Lock()
        self._session: PortalSession | None = None

    def _log(self, message: str):
        if self.verbose:
            print(message)

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._session is not None

    def snapshot(self) -> PortalSession:
        """Return the current session or raise NotAuthenticated."""
        with self._lock:
            session = self._session
        if session is None:
            raise NotAuthenticated('Not logged in')
        return session

    def _install(self, session: PortalSession | None) -> None:
        with self._lock:
            self._session = session

    def login(self, username: str, password: str, debug: bool = False) -> Any:
        """Log in, cache the session on disk and return the student data."""
        session, student = authenticate(username, password, verbose=self.verbose, debug=debug)

        try:
            self.cache.save(serialize_cookies(session.http.cookies), session.csrf, session.profile_id)
        except OSError as e:
            self._log(f'  Warning: could not cache session: {e}')

        self._install(session)
        return student

    def restore(self) -> Any:
        """
        Bring back the cached session and return the student data.

        The cached record is validated with one API call; if that fails the
        record is deleted and SessionExpired is raised.
        """
        saved = self.cache.load()
        session = PortalSession(
            build_session_from_cookies(saved['portal_cookies']),
            saved['csrf'],
            saved['profile_id'],
        )

        try:
            student = session.get(STUDENT_DATA_PATH)
        except ApiError as e:
            self._log(f'  Session validation failed: {e}')
            self.cache.clear()
            raise SessionExpired('Session expired') from e

        self._log('  Restored cached session')
        self._install(session)
        return student

    def logout(self) -> None:
        """Forget the session in memory and on disk."""
        try:
            self.cache.clear()
        except OSError as e:
            self._log(f'  Warning: could not delete session cache: {e}')
        self._install(None)
