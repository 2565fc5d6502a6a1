"""Thin client for the tour backend's REST API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import quote

import requests
from dotenv import load_dotenv
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'http://localhost:5000/api'
MAX_USER_PAGES = 50


class BackendNotConfigured(RuntimeError):
    """Raised when no backend URL is available."""


class BackendError(RuntimeError):
    """Raised when the backend can't be reached or rejects a call."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BackendUnauthorized(BackendError):
    """Raised on 401/403; the admin needs to log in again."""


@dataclass(frozen=True)
class UserPage:
    users: List[dict] = field(default_factory=list)
    next_page_token: Optional[str] = None


def _session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3, connect=3, read=3, backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=('GET',),
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


class BackendClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 15,
        mutation_timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise BackendNotConfigured('BACKEND_API_URL missing; add it to your environment/.env.')
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.mutation_timeout = mutation_timeout
        self.session = session or _session()

    @classmethod
    def from_env(cls, *, token: Optional[str] = None, session: Optional[requests.Session] = None) -> 'BackendClient':
        return cls(
            os.getenv('BACKEND_API_URL', DEFAULT_BASE_URL),
            token=token or os.getenv('BACKEND_TOKEN') or None,
            timeout=float(os.getenv('BACKEND_TIMEOUT', '15')),
            mutation_timeout=float(os.getenv('BACKEND_MUTATION_TIMEOUT', '10')),
            session=session,
        )

    def _headers(self) -> dict:
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _request(self, method: str, path: str, *, timeout: float, expect_json: bool = True, **kwargs) -> Any:
        url = f'{self.base_url}/{path.lstrip("/")}'
        logger.debug('Backend call: %s %s', method, url)
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise BackendError(f'{method} {path} timed out after {timeout}s') from exc
        except requests.RequestException as exc:
            raise BackendError(f'{method} {path} failed: {exc}') from exc

        if response.status_code in (401, 403):
            raise BackendUnauthorized('Session expired or not authorised.', status_code=response.status_code)
        if not response.ok:
            raise BackendError(
                f'{method} {path} returned HTTP {response.status_code}',
                status_code=response.status_code,
            )
        if not expect_json:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendError(f'{method} {path} returned a non-JSON body', status_code=response.status_code) from exc
        logger.debug('Backend response: %s %s -> %s', method, path, type(payload).__name__)
        return payload

    def _get_list(self, path: str, **kwargs) -> List[Any]:
        payload = self._request('GET', path, timeout=self.timeout, **kwargs)
        if not isinstance(payload, list):
            raise BackendError(f'GET {path} did not return a list')
        return payload

    def _mutate(self, method: str, path: str, **kwargs) -> None:
        self._request(method, path, timeout=self.mutation_timeout, expect_json=False, **kwargs)

    # --- auth ---

    def login(self, email: str, password: str) -> dict:
        payload = self._request(
            'POST', '/admin/login', timeout=self.timeout, json={'email': email, 'password': password}
        )
        if not isinstance(payload, dict) or not payload.get('token'):
            raise BackendUnauthorized('Login failed')
        return payload

    # --- bookings ---

    def fetch_bookings(self) -> List[Any]:
        return self._get_list('/bookings/all')

    def update_booking_status(self, booking_id: str, status: str) -> None:
        self._mutate('PUT', f'/bookings/status/{quote(booking_id, safe="")}', json={'status': status})

    def delete_booking(self, booking_id: str) -> None:
        self._mutate('DELETE', f'/bookings/{quote(booking_id, safe="")}')

    # --- users ---

    def fetch_users(self, limit: int = 10, page_token: str = '') -> UserPage:
        params: dict[str, Any] = {'limit': limit}
        if page_token:
            params['nextPageToken'] = page_token
        payload = self._request('GET', '/users', timeout=self.timeout, params=params)
        if isinstance(payload, list):
            return UserPage(users=payload)
        if isinstance(payload, dict):
            users = payload.get('users') or []
            if not isinstance(users, list):
                raise BackendError('GET /users returned a malformed users field')
            return UserPage(users=users, next_page_token=payload.get('nextPageToken') or None)
        raise BackendError('GET /users returned an unexpected body')

    def count_users(self, page_size: int = 100) -> int:
        total = 0
        token = ''
        for _ in range(MAX_USER_PAGES):
            page = self.fetch_users(limit=page_size, page_token=token)
            total += len(page.users)
            if not page.next_page_token:
                return total
            token = page.next_page_token
        logger.warning('Stopped counting users after %s pages', MAX_USER_PAGES)
        return total

    def delete_user(self, uid: str) -> None:
        self._mutate('DELETE', f'/users/delete/{quote(uid, safe="")}')

    # --- trips & blogs ---

    def fetch_trips(self) -> List[Any]:
        return self._get_list('/trips')

    def create_trip(self, fields: dict, files: Optional[list] = None) -> None:
        """Multipart create; ``files`` is a requests-style list of ``('images', (name, stream, type))``."""
        self._mutate('POST', '/trips/create', data=fields, files=files or None)

    def update_trip(self, trip_id: str, fields: dict, files: Optional[list] = None) -> None:
        self._mutate('PUT', f'/trips/update/{quote(trip_id, safe="")}', data=fields, files=files or None)

    def delete_trip(self, trip_id: str) -> None:
        self._mutate('DELETE', f'/trips/delete/{quote(trip_id, safe="")}')

    def fetch_blogs(self) -> List[Any]:
        return self._get_list('/blogs')

    def create_blog(self, post: dict) -> None:
        self._mutate('POST', '/blogs/add', json=post)

    def delete_blog(self, blog_id: str) -> None:
        self._mutate('DELETE', f'/blogs/{quote(blog_id, safe="")}')
