"""
HTTP client for the school API.

``SchoolApiClient`` wraps an ``httpx.Client``; ``RestCollection`` exposes
the five conventional operations of one collection endpoint. Every
failure, including transport errors, is raised as ``ApiError``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response or transport failure"""

    def __init__(self, status_code: int, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(f"{status_code}: {message}" if status_code else message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or {}

    @property
    def is_network_error(self) -> bool:
        return self.status_code == 0


@dataclass
class AuthSession:
    """The signed-in user, passed explicitly to whoever needs it"""

    token: str
    user: Dict[str, Any]
    csrf_token: Optional[str] = None

    @property
    def user_id(self):
        return self.user.get('id')

    @property
    def role(self) -> str:
        return self.user.get('role', '')

    @property
    def student_profile(self) -> Optional[Dict[str, Any]]:
        return self.user.get('student_profile')

    def has_role(self, *roles) -> bool:
        return self.role in roles


class SchoolApiClient:
    def __init__(self, base_url: str, session: Optional[AuthSession] = None,
                 transport: Optional[httpx.BaseTransport] = None, timeout: float = 30.0):
        self._client = httpx.Client(base_url=base_url, transport=transport, timeout=timeout)
        self.session = session

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _headers(self) -> Dict[str, str]:
        if self.session is None:
            return {}
        return {'Authorization': f'Bearer {self.session.token}'}

    def request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {**self._headers(), **kwargs.pop('headers', {})}
        try:
            response = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(0, f'Network error: {e}') from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            message = response.reason_phrase or 'Request failed'
            errors = None
            if isinstance(payload, dict):
                message = payload.get('error') or payload.get('message') or message
                errors = payload.get('errors')
            logger.info("%s %s -> %s %s", method, path, response.status_code, message)
            raise ApiError(response.status_code, message, errors)
        if not isinstance(payload, dict):
            # Proxy pages and SPA fallbacks answer 200 with HTML
            logger.warning("%s %s -> %s with a non-JSON body (%s)", method, path, response.status_code,
                           response.headers.get('content-type', 'unknown type'))
            raise ApiError(502, 'Unexpected response from server')
        return payload

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request('GET', path, params=params)

    def post(self, path: str, json: Any = None, **kwargs) -> Dict[str, Any]:
        return self.request('POST', path, json=json, **kwargs)

    def put(self, path: str, json: Any = None) -> Dict[str, Any]:
        return self.request('PUT', path, json=json)

    def delete(self, path: str) -> Dict[str, Any]:
        return self.request('DELETE', path)

    def login(self, password: str, email: Optional[str] = None, student_id: Optional[str] = None) -> AuthSession:
        """Exchange credentials for a session and keep it on this client"""
        credentials = {'password': password}
        if email:
            credentials['email'] = email
        if student_id:
            credentials['student_id'] = student_id
        payload = self.post('auth/login', json=credentials)
        self.session = AuthSession(token=payload['token'], user=payload['user'], csrf_token=payload.get('csrf_token'))
        return self.session

    def logout(self):
        try:
            self.post('auth/logout')
        finally:
            self.session = None

    def collection(self, path: str) -> 'RestCollection':
        return RestCollection(self, path)

    def upload(self, filename: str, content: bytes, mimetype: str, folder: Optional[str] = None) -> Dict[str, Any]:
        data = {'folder': folder} if folder else None
        payload = self.post('upload', files={'file': (filename, content, mimetype)}, data=data)
        return {key: payload.get(key) for key in ('url', 'file_id', 'filename', 'size', 'mimetype')}


@dataclass
class RestCollection:
    """``GET/POST <path>`` and ``GET/PUT/DELETE <path>/<id>`` on the API"""

    client: SchoolApiClient
    path: str
    params: Dict[str, Any] = field(default_factory=dict)

    def _item_path(self, item_id) -> str:
        return f"{self.path.rstrip('/')}/{item_id}"

    def _data(self, payload, expected):
        data = payload.get('data')
        if not isinstance(data, expected):
            raise ApiError(502, f'Malformed response from {self.path}: missing data')
        return data

    def list(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query = {**self.params, **(params or {})}
        return self._data(self.client.get(self.path, params=query or None), list)

    def get(self, item_id) -> Dict[str, Any]:
        return self._data(self.client.get(self._item_path(item_id)), dict)

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._data(self.client.post(self.path, json=fields), dict)

    def update(self, item_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._data(self.client.put(self._item_path(item_id), json=fields), dict)

    def delete(self, item_id) -> None:
        self.client.delete(self._item_path(item_id))

    def upload(self, filename: str, content: bytes, mimetype: str, folder: Optional[str] = None) -> Dict[str, Any]:
        return self.client.upload(filename, content, mimetype, folder=folder or self.path.strip('/'))
