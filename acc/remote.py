"""
acc Remote Attestations

Publishes and fetches attestations stored in an OCI registry next to the
image. Each attestation is an artifact tagged

    attestation-<first 12 digest chars>-<timestamp>

whose manifest carries one layer of media type
application/vnd.acc.attestation.v1+json holding the signed envelope.

Requests use a bounded timeout and are retried with exponential backoff
on transient failures. Fetched documents are cached under
.acc/attestations/<digest12>/remote/<registry>/<repository>/.
"""

import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urljoin

import requests

from . import config
from .attest import ATTESTATIONS_RELDIR
from .attestations import REMOTE_CACHE_DIR, Attestation
from .canonicalization import canonicalize
from .config import ATTESTATION_SOURCE_REMOTE
from .errors import RemoteFetchError, RemotePublishError
from .hashing import sha256_hash, sha256_hex
from .logging_config import audit_log
from .state import atomic_write_json
from .util import b64d, normalize_digest, sanitize_ref

logger = logging.getLogger(__name__)

ATTESTATION_MEDIA_TYPE = "application/vnd.acc.attestation.v1+json"
OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
MANIFEST_MEDIA_TYPES = ", ".join([
    OCI_MANIFEST_MEDIA_TYPE,
    "application/vnd.docker.distribution.manifest.v2+json",
])
EMPTY_CONFIG_MEDIA_TYPE = "application/vnd.oci.empty.v1+json"
EMPTY_CONFIG = b"{}"
TAG_PREFIX = "attestation-"
DOCKER_HUB_REGISTRY = "registry-1.docker.io"
RETRY_STATUS_CODES = (429, 502, 503, 504)


def parse_image_ref(image_ref: str) -> Tuple[str, str]:
    """
    Split an image reference into (registry host, repository).

    The first path component is a registry when it contains '.' or ':'
    or is 'localhost'; otherwise the image is on Docker Hub.
    """
    name = image_ref.split("@", 1)[0]
    last_slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > last_slash:
        name = name[:colon]

    parts = name.split("/", 1)
    if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        return parts[0], parts[1]
    if "/" not in name:
        name = "library/" + name
    return DOCKER_HUB_REGISTRY, name


def attestation_tag(digest: str, timestamp: str) -> str:
    """Tag for a published attestation; ':' is not allowed in tags."""
    return f"{TAG_PREFIX}{normalize_digest(digest)[:12]}-{timestamp.replace(':', '-')}"


def load_docker_credentials(
    registry: str,
    config_path: Optional[str] = None
) -> Optional[Tuple[str, str]]:
    """Basic-auth credentials for registry from the Docker config, if any."""
    path = config_path or os.path.join(
        os.getenv("DOCKER_CONFIG", os.path.join(os.path.expanduser("~"), ".docker")),
        "config.json",
    )
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            docker_config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable Docker config %s: %s", path, e)
        return None

    auths = docker_config.get("auths") or {}
    candidates = [registry, f"https://{registry}"]
    if registry == DOCKER_HUB_REGISTRY:
        candidates.append("https://index.docker.io/v1/")
    for key in candidates:
        entry = auths.get(key)
        if not entry or not entry.get("auth"):
            continue
        try:
            user, _, password = b64d(entry["auth"]).decode('utf-8').partition(":")
        except (ValueError, UnicodeDecodeError):
            logger.warning("Ignoring malformed Docker credentials for %s", key)
            return None
        return user, password
    return None


def _parse_bearer_challenge(header: str) -> Dict[str, str]:
    params = {}
    if not header.lower().startswith("bearer "):
        return params
    for item in header[len("bearer "):].split(","):
        key, _, value = item.strip().partition("=")
        params[key.strip()] = value.strip().strip('"')
    return params


class _RegistryClient:
    """
    Shared OCI distribution API plumbing: credentials, bearer token
    exchange, and requests with timeout and retry.

    Args:
        project_root: Project directory
        timeout: Per-request timeout in seconds
        max_retries: Retries after the first attempt on transient failures
        plain_http: Use http:// instead of https://
        session: requests.Session to use (injected in tests)
        credentials: (user, password) overriding the Docker config
        sleep: Backoff sleep function
    """

    error = RemoteFetchError

    def __init__(
        self,
        project_root: str = ".",
        timeout: float = config.REMOTE_TIMEOUT,
        max_retries: int = config.REMOTE_RETRIES,
        plain_http: bool = config.REGISTRY_PLAIN_HTTP,
        session: Optional[requests.Session] = None,
        credentials: Optional[Tuple[str, str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.project_root = project_root
        self.timeout = timeout
        self.max_retries = max_retries
        self.plain_http = plain_http
        self._session = session or requests.Session()
        self._credentials = credentials
        self._sleep = sleep
        self._token: Optional[str] = None

    def _base_url(self, registry: str, repository: str) -> str:
        if self._credentials is None:
            self._credentials = load_docker_credentials(registry)
        return f"{'http' if self.plain_http else 'https'}://{registry}/v2/{repository}"

    def _json(self, response: requests.Response, what: str) -> Any:
        try:
            response.raise_for_status()
            return response.json()
        except (requests.HTTPError, ValueError) as e:
            raise self.error(f"failed to read {what}: {e}") from e

    def _json_object(self, response: requests.Response, what: str) -> Dict[str, Any]:
        body = self._json(response, what)
        if not isinstance(body, dict):
            raise self.error(f"failed to read {what}: response is not a JSON object")
        return body

    def _headers(self, accept: Optional[str], content_type: Optional[str]) -> Dict[str, str]:
        headers = {}
        if accept:
            headers["Accept"] = accept
        if content_type:
            headers["Content-Type"] = content_type
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _authenticate(self, challenge: str, repository: str, scope: str) -> bool:
        """Exchange credentials for a bearer token per the registry's challenge."""
        params = _parse_bearer_challenge(challenge)
        realm = params.get("realm")
        if not realm:
            return False
        query = {"service": params.get("service", ""), "scope": params.get("scope") or f"repository:{repository}:{scope}"}
        response = self._session.get(realm, params=query, auth=self._credentials, timeout=self.timeout)
        if response.status_code != 200:
            return False
        try:
            body = response.json()
        except ValueError:
            return False
        if not isinstance(body, dict):
            return False
        self._token = body.get("token") or body.get("access_token")
        return bool(self._token)

    def _request(
        self,
        method: str,
        url: str,
        registry: str,
        repository: str,
        accept: Optional[str] = None,
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> requests.Response:
        """Send with timeout, auth and retry with exponential backoff."""
        scope = "pull" if method in ("GET", "HEAD") else "pull,push"
        last_exc: Optional[Exception] = None
        authenticated = False
        attempt = 0
        while attempt <= self.max_retries:
            attempt += 1
            try:
                auth = self._credentials if (self._credentials and not self._token) else None
                resp = self._session.request(
                    method, url,
                    headers=self._headers(accept, content_type),
                    data=data,
                    auth=auth,
                    timeout=self.timeout,
                )

                if resp.status_code == 401 and not authenticated:
                    authenticated = True
                    if self._authenticate(resp.headers.get("WWW-Authenticate", ""), repository, scope):
                        attempt -= 1
                        continue
                    raise self.error(f"{registry}: authentication required")

                if resp.status_code in RETRY_STATUS_CODES and attempt <= self.max_retries:
                    audit_log.remote_fetch_retry(url, attempt, f"status {resp.status_code}")
                    self._sleep(0.5 * (2 ** (attempt - 1)))
                    continue
                return resp
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_exc = exc
                logger.warning("Registry request failed attempt %d: %s", attempt, exc)
                if attempt <= self.max_retries:
                    audit_log.remote_fetch_retry(url, attempt, str(exc))
                    self._sleep(0.5 * (2 ** (attempt - 1)))
                    continue
                raise self.error(f"{registry} unreachable: {exc}") from exc
        raise self.error(f"{registry} request failed after {self.max_retries + 1} attempts: {last_exc}")


class RegistryAttestationFetcher(_RegistryClient):
    """Fetch attestations for an image from its registry."""

    def fetch(self, image_ref: str, artifact_digest: Optional[str]) -> List[Attestation]:
        """
        Fetch every attestation published for the digest.

        Raises:
            RemoteFetchError: the registry stayed unreachable after retries,
                or answered with something other than the expected JSON
        """
        digest = normalize_digest(artifact_digest)
        if not digest:
            raise RemoteFetchError(f"cannot fetch remote attestations for {image_ref}: digest unknown")

        registry, repository = parse_image_ref(image_ref)
        base = self._base_url(registry, repository)

        tags_response = self._request("GET", f"{base}/tags/list", registry, repository)
        if tags_response.status_code == 404:
            return []
        tags = self._json_object(tags_response, "tags list").get("tags")
        if not isinstance(tags, list):
            tags = []
        prefix = f"{TAG_PREFIX}{digest[:12]}-"

        found = []
        for tag in sorted(t for t in tags if isinstance(t, str) and t.startswith(prefix)):
            document = self._fetch_tag(base, registry, repository, tag)
            if document is None:
                continue
            location = self._cache(digest, registry, repository, document)
            found.append(Attestation(
                source=ATTESTATION_SOURCE_REMOTE,
                location=location or f"{registry}/{repository}:{tag}",
                document=document,
            ))
        logger.info("Fetched %d remote attestations for %s", len(found), image_ref)
        return found

    def _fetch_tag(self, base: str, registry: str, repository: str, tag: str) -> Optional[Dict[str, Any]]:
        manifest_response = self._request(
            "GET", f"{base}/manifests/{tag}", registry, repository, accept=MANIFEST_MEDIA_TYPES
        )
        if manifest_response.status_code == 404:
            return None
        manifest = self._json_object(manifest_response, f"manifest {tag}")

        layers = manifest.get("layers")
        for layer in layers if isinstance(layers, list) else []:
            if not isinstance(layer, dict) or layer.get("mediaType") != ATTESTATION_MEDIA_TYPE:
                continue
            blob_digest = layer.get("digest")
            if not isinstance(blob_digest, str) or not blob_digest:
                logger.warning("Skipping %s: attestation layer has no digest", tag)
                return None
            blob_response = self._request("GET", f"{base}/blobs/{blob_digest}", registry, repository)
            if sha256_hex(blob_response.content) != normalize_digest(blob_digest):
                logger.warning("Skipping %s: blob digest mismatch", tag)
                return None
            document = self._json(blob_response, f"attestation blob {tag}")
            if not isinstance(document, dict):
                logger.warning("Skipping %s: attestation is not a JSON object", tag)
                return None
            return document

        logger.warning("Skipping %s: no attestation layer", tag)
        return None

    def _cache(self, digest: str, registry: str, repository: str, document: Dict[str, Any]) -> Optional[str]:
        blob = json.dumps(document, sort_keys=True).encode('utf-8')
        path = os.path.join(
            self.project_root, ATTESTATIONS_RELDIR, digest[:12], REMOTE_CACHE_DIR,
            sanitize_ref(registry), sanitize_ref(repository), sha256_hex(blob)[:16] + ".json",
        )
        try:
            atomic_write_json(path, document)
        except OSError as e:
            logger.warning("Failed to cache remote attestation: %s", e)
            return None
        return path


class RegistryAttestationPublisher(_RegistryClient):
    """
    Publish a signed attestation next to its image.

    The JCS bytes of the signed document are uploaded as a blob and an OCI
    image manifest with that single layer (and the empty config) is put
    under the attestation tag, which is what RegistryAttestationFetcher
    reads back. Publishing is idempotent per tag.
    """

    error = RemotePublishError

    def publish(self, image_ref: str, document: Dict[str, Any]) -> str:
        """
        Publish a signed attestation document and return its tag.

        Raises:
            RemotePublishError: the subject is incomplete, or the registry
                rejected or never answered a request
        """
        payload = document.get("attestation") if isinstance(document.get("attestation"), dict) else document
        subject = payload.get("subject") if isinstance(payload.get("subject"), dict) else {}
        image_digest = subject.get("imageDigest")
        timestamp = payload.get("timestamp")
        if not isinstance(image_digest, str) or not normalize_digest(image_digest):
            raise RemotePublishError(f"cannot publish attestation for {image_ref}: digest unknown")
        if not isinstance(timestamp, str) or not timestamp:
            raise RemotePublishError(f"cannot publish attestation for {image_ref}: timestamp missing")

        registry, repository = parse_image_ref(image_ref)
        base = self._base_url(registry, repository)
        tag = attestation_tag(image_digest, timestamp)

        existing = self._request("HEAD", f"{base}/manifests/{tag}", registry, repository, accept=MANIFEST_MEDIA_TYPES)
        if existing.status_code == 200:
            logger.info("Attestation %s already published to %s/%s", tag, registry, repository)
            return tag

        blob = canonicalize(document)
        blob_digest = sha256_hash(blob)
        config_digest = sha256_hash(EMPTY_CONFIG)
        self._upload_blob(base, registry, repository, blob, blob_digest)
        self._upload_blob(base, registry, repository, EMPTY_CONFIG, config_digest)

        manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST_MEDIA_TYPE,
            "artifactType": ATTESTATION_MEDIA_TYPE,
            "config": {"mediaType": EMPTY_CONFIG_MEDIA_TYPE, "digest": config_digest, "size": len(EMPTY_CONFIG)},
            "layers": [{
                "mediaType": ATTESTATION_MEDIA_TYPE,
                "digest": blob_digest,
                "size": len(blob),
                "annotations": {
                    "org.opencontainers.image.created": timestamp,
                    "acc.attestation.imageRef": image_ref,
                    "acc.attestation.imageDigest": image_digest,
                },
            }],
        }
        response = self._request(
            "PUT", f"{base}/manifests/{tag}", registry, repository,
            data=json.dumps(manifest).encode('utf-8'),
            content_type=OCI_MANIFEST_MEDIA_TYPE,
        )
        self._expect(response, (200, 201), f"manifest {tag}")
        logger.info("Published attestation %s to %s/%s", tag, registry, repository)
        return tag

    def _upload_blob(self, base: str, registry: str, repository: str, blob: bytes, digest: str) -> None:
        """Monolithic upload: POST for a session, then PUT the bytes with their digest."""
        if self._request("HEAD", f"{base}/blobs/{digest}", registry, repository).status_code == 200:
            return

        started = self._request("POST", f"{base}/blobs/uploads/", registry, repository)
        self._expect(started, (202,), "blob upload")
        location = started.headers.get("Location")
        if not location:
            raise RemotePublishError(f"{registry}: blob upload returned no location")

        url = urljoin(base + "/", location)
        url += ("&" if "?" in url else "?") + urlencode({"digest": digest})
        done = self._request(
            "PUT", url, registry, repository, data=blob, content_type="application/octet-stream"
        )
        self._expect(done, (201,), f"blob {digest}")

    def _expect(self, response: requests.Response, codes: Tuple[int, ...], what: str) -> None:
        if response.status_code not in codes:
            raise RemotePublishError(f"{what}: registry answered {response.status_code}")
