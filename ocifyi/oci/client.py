from __future__ import annotations

import itertools
import logging
import zlib
from contextlib import contextmanager
from hashlib import sha256
from typing import Iterator
from urllib.parse import urlparse, urlunparse

import httpx

from ocifyi.exceptions import AuthenticationError, DecodeError, NotFound, TransportError

logger = logging.getLogger(__name__)

DOCKER_HUB = "registry-1.docker.io"
DEFAULT_TIMEOUT = 30.0

IMAGE_MEDIA_TYPES = [
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
]
INDEX_MEDIA_TYPES = [
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
]
MANIFEST_MEDIA_TYPES = ", ".join(IMAGE_MEDIA_TYPES)
# Multi-arch images are signed by the digest of their index
SUBJECT_MEDIA_TYPES = ", ".join(IMAGE_MEDIA_TYPES + INDEX_MEDIA_TYPES)

GZIP_MAGIC = b"\x1f\x8b"


def _clean_url(registry_url: str) -> str:
    parts = urlparse(registry_url)
    if not parts.scheme:
        parts = urlparse(f"https://{registry_url}")
    if parts.netloc in ("docker.io", "index.docker.io"):
        parts = parts._replace(netloc=DOCKER_HUB)
    return urlunparse(parts).rstrip("/")


def _parse_www_auth(www_authenticate: str) -> dict[str, str]:
    """Parse the WWW-Authenticate header"""
    result = {}
    for item in www_authenticate.removeprefix("Bearer ").split(","):
        key, value = item.split("=", 1)
        result[key.strip()] = value.strip('"')
    return result


def _raise_for_status(response: httpx.Response, what: str):
    if response.status_code == 404:
        raise NotFound(f"{what} not found")
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise TransportError(f"error getting {what}: {e}") from e


class BearerAuth(httpx.Auth):
    """Attaches HTTP Bearer Authentication to the given Request object."""

    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


class Client:
    """Read-only client for the OCI registry API.

    `transport` is passed on to httpx and allows swapping in
    an `httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        registry_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.registry_url = _clean_url(registry_url)
        self.username = username
        self.password = password
        self.timeout = timeout
        self.transport = transport
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                follow_redirects=True,
                max_redirects=2,
                timeout=self.timeout,
                transport=self.transport,
            )
            try:
                self.try_authentication()
            except AuthenticationError:
                self.close()
                raise
            except httpx.HTTPError as e:
                self.close()
                raise TransportError(f"error connecting to {self.registry_url}: {e}") from e
        return self._session

    def head(self, uri, **kwargs):
        return self._send("HEAD", uri, **kwargs)

    def get(self, uri, **kwargs):
        return self._send("GET", uri, **kwargs)

    def _send(self, method, uri, **kwargs) -> httpx.Response:
        try:
            return self.session.request(method, f"{self.registry_url}{uri}", **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {uri} failed: {e}") from e

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def try_authentication(self):
        result = self._session.get(f"{self.registry_url}/v2/")
        if result.status_code == 401:
            www_authenticate = _parse_www_auth(result.headers["WWW-Authenticate"])
            logger.debug(www_authenticate)
            self.authenticate(
                token_url=www_authenticate["realm"],
                service=www_authenticate.get("service"),
                scope=www_authenticate.get("scope"),
            )
        elif result.status_code != 404:
            # Some registries do not implement the version check endpoint
            result.raise_for_status()

    def authenticate(self, token_url, service, scope):
        """Use the token api to get a token, with basic authentication if provided

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        params = {"service": service}
        if scope:
            params["scope"] = scope
        auth = None
        if self.password:
            params["client_id"] = self.username
            auth = (self.username or "", self.password)
        response = self._session.get(token_url, params=params, auth=auth)
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.registry_url} requires authentication, "
                f"provide a username and/or password."
            )
        response.raise_for_status()
        data = response.json()
        self._session.auth = BearerAuth(data.get("token") or data["access_token"])

    def reauthenticate(self, response: httpx.Response, name: str) -> bool:
        """Get a token for the scope requested by a 401 `response`

        Tokens from the initial /v2/ check carry no repository scope,
        registries answer the first request for repository `name` with a challenge.
        Returns False when the response carries no bearer challenge.
        """
        challenge = response.headers.get("WWW-Authenticate", "")
        if response.status_code != 401 or not challenge.startswith("Bearer "):
            return False
        www_authenticate = _parse_www_auth(challenge)
        try:
            self.authenticate(
                token_url=www_authenticate["realm"],
                service=www_authenticate.get("service"),
                scope=www_authenticate.get("scope", f"repository:{name}:pull"),
            )
        except httpx.HTTPError as e:
            raise TransportError(f"error getting token for {name}: {e}") from e
        return True

    def head_manifest(self, name: str, reference: str) -> str:
        """Return the digest of manifest or index `reference` in repository `name`"""
        uri = f"/v2/{name}/manifests/{reference}"
        result = self.head(uri, headers={"Accept": SUBJECT_MEDIA_TYPES})
        if self.reauthenticate(result, name):
            result = self.head(uri, headers={"Accept": SUBJECT_MEDIA_TYPES})
        _raise_for_status(result, f"manifest {name}:{reference}")
        if digest := result.headers.get("Docker-Content-Digest"):
            return digest
        logger.debug("No Docker-Content-Digest header for %s:%s", name, reference)
        data = self.pull_manifest(name, reference, SUBJECT_MEDIA_TYPES)
        return f"sha256:{sha256(data).hexdigest()}"

    def pull_manifest(
        self,
        name: str,
        reference: str,
        media_type: str = MANIFEST_MEDIA_TYPES,
    ) -> bytes:
        uri = f"/v2/{name}/manifests/{reference}"
        result = self.get(uri, headers={"Accept": media_type})
        if self.reauthenticate(result, name):
            result = self.get(uri, headers={"Accept": media_type})
        if result.status_code == 403:
            logger.debug(result.headers)
        _raise_for_status(result, f"manifest {name}:{reference}")
        return result.content

    @contextmanager
    def open_blob(self, name: str, digest: str) -> Iterator[Iterator[bytes]]:
        """Stream blob `digest` of repository `name`

        Yields an iterator over the content, gunzipped when the blob is
        gzip compressed. The response is closed when the context exits.
        """
        uri = f"/v2/{name}/blobs/{digest}"
        request = self.session.build_request("GET", f"{self.registry_url}{uri}")
        try:
            response = self.session.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"GET {uri} failed: {e}") from e
        try:
            _raise_for_status(response, f"blob {name}@{digest}")
            yield _decompress(_iter_bytes(response, uri), uri)
        finally:
            response.close()


def _iter_bytes(response: httpx.Response, uri: str) -> Iterator[bytes]:
    try:
        yield from response.iter_bytes()
    except httpx.HTTPError as e:
        raise TransportError(f"error reading {uri}: {e}") from e


def _decompress(chunks: Iterator[bytes], uri: str) -> Iterator[bytes]:
    """Gunzip `chunks` when they start with the gzip magic, pass them on otherwise"""
    chunks = iter(chunks)
    head = b""
    for chunk in chunks:
        head += chunk
        if len(head) >= len(GZIP_MAGIC):
            break
    if not head.startswith(GZIP_MAGIC):
        yield head
        yield from chunks
        return

    decompressor = zlib.decompressobj(wbits=31)
    try:
        for chunk in itertools.chain([head], chunks):
            yield decompressor.decompress(chunk)
        yield decompressor.flush()
    except zlib.error as e:
        raise DecodeError(f"error decompressing {uri}: {e}") from e
    if not decompressor.eof:
        raise DecodeError(f"error decompressing {uri}: truncated gzip stream")
