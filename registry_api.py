"""Docker Registry HTTP API v2 client for listing repository tags.

Anonymous access only: when a registry answers 401 with a Bearer
challenge, a pull token is requested from the advertised realm and the
request is retried.
"""

import logging
import re
import threading
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "registry-1.docker.io"
DEFAULT_NAMESPACE = "library"
DEFAULT_TAG = "latest"
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", DEFAULT_REGISTRY)
PLAIN_HTTP_HOSTS = ("localhost", "127.0.0.1")
REQUEST_TIMEOUT = 30
DEFAULT_PAGE_SIZE = 1000

_TAG_RE = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$')
_PATH_COMPONENT_RE = re.compile(r'^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$')
_DIGEST_RE = re.compile(r'^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$')
_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


class TagCheckError(Exception):
    """Base class for per-image failures."""


class RegistryAPIError(TagCheckError):
    """Error from a container registry."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        if status:
            super().__init__(f"Registry API error {status}: {message}")
        else:
            super().__init__(f"Registry API error: {message}")


class MissingTagError(TagCheckError):
    """Image reference pins a digest but names no tag."""

    def __init__(self):
        super().__init__("image reference has no tag to match on")


class ImageReferenceError(ValueError):
    """Image reference cannot be parsed."""


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.registry}/{self.repository}"

    def with_registry(self, registry: str) -> 'ImageReference':
        return ImageReference(_normalize_registry(registry), self.repository, self.tag, self.digest)

    def __str__(self) -> str:
        ref = self.name
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref


def _normalize_registry(registry: str) -> str:
    registry = registry.strip().rstrip('/')
    for prefix in ('https://', 'http://'):
        if registry.startswith(prefix):
            registry = registry[len(prefix):]
    if registry in DOCKER_HUB_ALIASES:
        return DEFAULT_REGISTRY
    return registry


def parse_image_reference(image: str) -> ImageReference:
    """
    Parse an image reference into registry, repository, tag and digest.

    Args:
        image: Image reference (e.g., 'nginx:1.25', 'linuxserver/calibre:v8.16.2-ls374',
               'ghcr.io/org/app:v1.2.0', 'localhost:5000/app@sha256:...')

    Returns:
        ImageReference. Docker Hub names gain the default registry and, for
        single-component names, the 'library' namespace. Without tag or
        digest the tag is 'latest'; with a digest only the tag is None.
    """
    ref = image.strip()
    if not ref:
        raise ImageReferenceError("image reference is empty")

    digest = None
    if '@' in ref:
        ref, digest = ref.split('@', 1)
        if not _DIGEST_RE.match(digest):
            raise ImageReferenceError(f"invalid digest '{digest}' in '{image}'")

    tag = None
    slash = ref.rfind('/')
    colon = ref.rfind(':')
    if colon > slash:
        ref, tag = ref[:colon], ref[colon + 1:]
        if not _TAG_RE.match(tag):
            raise ImageReferenceError(f"invalid tag '{tag}' in '{image}'")

    # Registry indicators: contains '.', is localhost, or has port ':'
    parts = ref.split('/', 1)
    first_part = parts[0]
    if len(parts) > 1 and ('.' in first_part or ':' in first_part or first_part == 'localhost'):
        registry = _normalize_registry(first_part)
        repository = parts[1]
    else:
        registry = DEFAULT_REGISTRY
        repository = ref

    if not repository:
        raise ImageReferenceError(f"missing repository name in '{image}'")
    for component in repository.split('/'):
        if not _PATH_COMPONENT_RE.match(component):
            raise ImageReferenceError(f"invalid repository name '{repository}' in '{image}'")

    if registry == DEFAULT_REGISTRY and '/' not in repository:
        repository = f"{DEFAULT_NAMESPACE}/{repository}"

    if tag is None and digest is None:
        tag = DEFAULT_TAG

    return ImageReference(registry, repository, tag, digest)


def _parse_challenge(header: str) -> Optional[Dict[str, str]]:
    """Parse a 'WWW-Authenticate: Bearer realm="...",service="..."' header."""
    scheme, _, params = header.strip().partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return dict(_CHALLENGE_PARAM_RE.findall(params))


def _error_message(response: requests.Response) -> str:
    """Extract a readable message from a registry error response."""
    try:
        data = response.json()
    except ValueError:
        data = None
    errors = data.get('errors') if isinstance(data, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = errors[0].get('message')
        if isinstance(message, str) and message:
            return message
    return response.text.strip() or response.reason or "unknown error"


def _json_object(response: requests.Response, what: str) -> Dict[str, Any]:
    """Decode a successful response body that must be a JSON object."""
    try:
        data = response.json()
    except ValueError:
        raise RegistryAPIError(response.status_code, f"{what} is not valid JSON")
    if not isinstance(data, dict):
        raise RegistryAPIError(response.status_code, f"{what} is not a JSON object")
    return data


class RegistryClient:
    """Lists tags from Docker Registry HTTP API v2 endpoints."""

    def __init__(self, user_agent: Optional[str] = None,
                 timeout: int = REQUEST_TIMEOUT,
                 page_size: int = DEFAULT_PAGE_SIZE):
        self.user_agent = user_agent
        self.timeout = timeout
        self.page_size = page_size
        self._tokens: Dict[Tuple[str, str], str] = {}
        self._tokens_lock = threading.Lock()

    def _base_url(self, registry: str) -> str:
        host = registry.split(':', 1)[0]
        scheme = 'http' if host in PLAIN_HTTP_HOSTS else 'https'
        return f"{scheme}://{registry}"

    def _headers(self, ref: ImageReference) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.user_agent:
            headers['User-Agent'] = self.user_agent
        with self._tokens_lock:
            token = self._tokens.get((ref.registry, ref.repository))
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    def _send(self, url: str, headers: Dict[str, str],
              params: Optional[Dict[str, str]] = None) -> requests.Response:
        try:
            return requests.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RegistryAPIError(0, str(e)) from e

    def _fetch_token(self, ref: ImageReference, challenge: Dict[str, str]) -> str:
        """
        Get an anonymous pull token from the realm named in a Bearer challenge.

        Args:
            ref: Image whose repository needs pull access
            challenge: Parsed WWW-Authenticate parameters

        Returns:
            Bearer token
        """
        realm = challenge.get('realm')
        if not realm:
            raise RegistryAPIError(401, "authentication challenge has no realm")

        params = {'scope': challenge.get('scope') or f"repository:{ref.repository}:pull"}
        if challenge.get('service'):
            params['service'] = challenge['service']

        headers = {'User-Agent': self.user_agent} if self.user_agent else {}
        response = self._send(realm, headers, params)
        if response.status_code >= 400:
            raise RegistryAPIError(response.status_code,
                                   f"token request failed: {_error_message(response)}")
        data = _json_object(response, "token response")
        token = data.get('token') or data.get('access_token')
        if not isinstance(token, str) or not token:
            raise RegistryAPIError(response.status_code, "token response contains no token")

        with self._tokens_lock:
            self._tokens[(ref.registry, ref.repository)] = token
        logger.debug(f"Obtained pull token for {ref.name}")
        return token

    def _get(self, ref: ImageReference, url: str,
             params: Optional[Dict[str, str]] = None) -> requests.Response:
        """GET *url*, authenticating once if the registry asks for it."""
        response = self._send(url, self._headers(ref), params)

        if response.status_code == 401:
            challenge = _parse_challenge(response.headers.get('WWW-Authenticate', ''))
            if challenge is None:
                raise RegistryAPIError(401, "registry requires authentication")
            self._fetch_token(ref, challenge)
            response = self._send(url, self._headers(ref), params)

        if response.status_code >= 400:
            raise RegistryAPIError(response.status_code, _error_message(response))
        return response

    def list_tags(self, ref: ImageReference) -> List[str]:
        """
        Get all tags for a repository, following pagination.

        Args:
            ref: Parsed image reference (tag and digest are ignored)

        Returns:
            Tags in the order the registry reported them
        """
        tags_url = f"{self._base_url(ref.registry)}/v2/{ref.repository}/tags/list"
        url = tags_url
        params: Optional[Dict[str, str]] = {'n': str(self.page_size)}
        tags: List[str] = []
        seen = set()

        while True:
            response = self._get(ref, url, params)
            data = _json_object(response, "tag list")
            page_tags = data.get('tags') or []
            if not isinstance(page_tags, list) or not all(isinstance(tag, str) for tag in page_tags):
                raise RegistryAPIError(response.status_code, "tag list 'tags' is not a list of strings")

            page = [tag for tag in page_tags if tag not in seen]
            # Empty page, or a registry that ignores 'last' and repeats itself
            if not page:
                break
            tags.extend(page)
            seen.update(page)

            next_link = response.links.get('next', {}).get('url')
            if next_link:
                url = urllib.parse.urljoin(tags_url, next_link)
                params = None
            else:
                url = tags_url
                params = {'n': str(self.page_size), 'last': page[-1]}

        logger.debug(f"Fetched {len(tags)} tags for {ref.name}")
        return tags
