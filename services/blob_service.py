# services/blob_service.py
import logging
import os
import time
from typing import Dict, Iterable, Optional, Tuple
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import (
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
    BlobSasPermissions,
)

from utils.errors import StorageUnavailable

logger = logging.getLogger(__name__)

# ────────────────────────────────────────────────────────────
# Config
# ────────────────────────────────────────────────────────────
_CONN_STR = os.environ.get("AZURE_BLOB_CONN_STRING")
DEFAULT_CONTAINER = os.environ.get("AZURE_BLOB_CONTAINER", "mygarage")

DEFAULT_SIGNED_URL_TTL_SECONDS = 10 * 60
SIGNED_URL_CACHE_SAFETY_SECONDS = 15
CONTAINER_PUBLIC_CACHE_TTL_SECONDS = 10 * 60


def _signed_url_ttl_seconds() -> int:
    configured = os.environ.get("PUBLIC_IMAGE_SIGNED_URL_TTL_SECONDS")
    try:
        parsed = int(configured) if configured else DEFAULT_SIGNED_URL_TTL_SECONDS
    except ValueError:
        return DEFAULT_SIGNED_URL_TTL_SECONDS
    return parsed if parsed >= 30 else DEFAULT_SIGNED_URL_TTL_SECONDS


SIGNED_URL_TTL_SECONDS = _signed_url_ttl_seconds()

_bsc: Optional[BlobServiceClient] = None
_container_public_cache: Dict[str, Tuple[bool, float]] = {}
_signed_url_cache: Dict[Tuple[str, str], Tuple[str, float]] = {}


def _client() -> BlobServiceClient:
    """Lazily create the service client so imports work without storage configured."""
    global _bsc
    if _bsc is None:
        if not _CONN_STR:
            raise StorageUnavailable(
                "AZURE_BLOB_CONN_STRING is not set. For Azurite, use the devstore connection string."
            )
        _bsc = BlobServiceClient.from_connection_string(_CONN_STR)
    return _bsc


def _parse_account(conn_str: str) -> Tuple[Optional[str], Optional[str]]:
    """Returns (account_name, account_key|None) from a connection string."""
    parts = dict(kv.split("=", 1) for kv in conn_str.split(";") if kv and "=" in kv)
    return parts.get("AccountName"), parts.get("AccountKey")


def _blob_url(container: str, path: str) -> str:
    # Standard form: {endpoint}/{container}/{blob_name}
    endpoint = _client().primary_endpoint.rstrip("/")
    return f"{endpoint}/{quote(container)}/{quote(path)}"


# ────────────────────────────────────────────────────────────
# Public API
# ────────────────────────────────────────────────────────────
def put_object(path: str, data: bytes, content_type: str, container: Optional[str] = None) -> str:
    """Upload raw bytes at `path` and return the path to store in the DB."""
    container = container or DEFAULT_CONTAINER
    try:
        blob = _client().get_blob_client(container=container, blob=path)
        blob.upload_blob(
            data,
            overwrite=False,
            content_settings=ContentSettings(content_type=content_type),
        )
    except AzureError as e:
        logger.exception("Blob upload failed for %s/%s", container, path)
        raise StorageUnavailable("Upload failed") from e
    return path


def remove_objects(paths: Iterable[Optional[str]], container: Optional[str] = None) -> None:
    """Best-effort delete; rows are already gone when this runs, so failures are only logged."""
    container = container or DEFAULT_CONTAINER
    for path in {p for p in paths if p}:
        try:
            _client().get_container_client(container).delete_blob(path, delete_snapshots="include")
        except ResourceNotFoundError:
            pass
        except (AzureError, StorageUnavailable):
            logger.exception("Blob delete failed for %s/%s", container, path)
        _signed_url_cache.pop((container, path), None)


def container_is_public(container: Optional[str] = None) -> bool:
    container = container or DEFAULT_CONTAINER
    cached = _container_public_cache.get(container)
    if cached and cached[1] > time.monotonic():
        return cached[0]
    try:
        props = _client().get_container_client(container).get_container_properties()
        is_public = bool(props.public_access)
    except (AzureError, StorageUnavailable):
        logger.exception("Could not read access level of container %s", container)
        is_public = False
    _container_public_cache[container] = (is_public, time.monotonic() + CONTAINER_PUBLIC_CACHE_TTL_SECONDS)
    return is_public


def public_url(path: str, container: Optional[str] = None) -> str:
    return _blob_url(container or DEFAULT_CONTAINER, path)


def sign_url(path: str, ttl_seconds: int = SIGNED_URL_TTL_SECONDS, container: Optional[str] = None) -> str:
    """
    Read-only SAS URL for a blob in a private container.
    Requires an account key (works with Azurite and key-based Azure accounts).
    """
    container = container or DEFAULT_CONTAINER
    account_name, account_key = _parse_account(_CONN_STR or "")
    if not account_key:
        raise StorageUnavailable("Signing requires an account key")
    sas = generate_blob_sas(
        account_name=account_name,
        container_name=container,
        blob_name=path,
        account_key=account_key,
        permission=BlobSasPermissions(read=True),
        expiry=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
    )
    return f"{_blob_url(container, path)}?{sas}"


def object_url(path: Optional[str], container: Optional[str] = None) -> Optional[str]:
    """URL a browser can load: plain URL for public containers, cached SAS URL otherwise."""
    if not path or not path.strip():
        return None
    path = path.strip().strip("/")
    if path.startswith(("http://", "https://")):
        return path
    container = (container or DEFAULT_CONTAINER).strip().lower()

    if container_is_public(container):
        return public_url(path, container)

    key = (container, path)
    cached = _signed_url_cache.get(key)
    now = time.monotonic()
    if cached and cached[1] > now + SIGNED_URL_CACHE_SAFETY_SECONDS:
        return cached[0]
    try:
        url = sign_url(path, SIGNED_URL_TTL_SECONDS, container)
    except StorageUnavailable:
        logger.exception("Could not sign URL for %s/%s", container, path)
        return None
    _signed_url_cache[key] = (url, now + SIGNED_URL_TTL_SECONDS)
    return url
