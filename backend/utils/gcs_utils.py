from __future__ import annotations

import io
import json
import os
import logging
from pathlib import Path

import dotenv
import requests
from google.cloud import storage
from google.cloud.exceptions import Conflict, NotFound
from google.oauth2 import service_account


dotenv.load_dotenv()
logger = logging.getLogger(__name__)

GCS_PUBLIC_BASE_URL = os.getenv("GCS_PUBLIC_BASE_URL", "https://storage.googleapis.com")
SOURCE_DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("SOURCE_DOWNLOAD_TIMEOUT_SECONDS", "120"))


class SourceDownloadError(Exception):
    pass


def _get_storage_client() -> storage.Client:
    credentials_raw: str = os.getenv("GCP_CREDENTIALS", "")
    if not credentials_raw:
        return storage.Client()
    credentials_info = json.loads(credentials_raw)
    credentials = service_account.Credentials.from_service_account_info(
        credentials_info
    )
    return storage.Client(
        credentials=credentials, project=credentials_info.get("project_id")
    )


def _get_bucket(bucket_name: str) -> storage.Bucket:
    storage_client = _get_storage_client()
    return storage_client.bucket(bucket_name)


def init_bucket(bucket_name: str, cors: list[dict] | None = None) -> bool:
    try:
        storage_client = _get_storage_client()
        bucket = storage_client.bucket(bucket_name)
        bucket.storage_class = "STANDARD"

        storage_client.create_bucket(bucket)
    except Conflict:
        bucket = _get_bucket(bucket_name)
    except Exception:
        logger.exception("Error creating bucket %s", bucket_name)
        return False

    if cors:
        try:
            bucket.cors = cors
            bucket.patch()
        except Exception:
            logger.exception("Error updating CORS for bucket %s", bucket_name)
            return False
    return True


def public_url(bucket_name: str, blob_name: str) -> str:
    return f"{GCS_PUBLIC_BASE_URL.rstrip('/')}/{bucket_name}/{blob_name}"


def upload_file(
    bucket_name: str,
    contents: bytes,
    destination_blob_name: str,
    content_type: str | None = None,
) -> dict:
    try:
        bucket = _get_bucket(bucket_name)
        blob = bucket.blob(destination_blob_name)
        blob.upload_from_file(io.BytesIO(contents), content_type=content_type)
        blob.reload()

        return {
            "path": blob.name,
            "url": public_url(bucket_name, blob.name),
            "gcs_path": f"gs://{bucket_name}/{blob.name}",
            "content_type": blob.content_type,
            "size": blob.size,
        }
    except Exception:
        logger.exception(
            "Error uploading file to bucket %s at %s",
            bucket_name,
            destination_blob_name,
        )
        return {}


def delete_file(bucket_name: str, blob_name: str) -> bool:
    try:
        bucket = _get_bucket(bucket_name)
        blob = bucket.blob(blob_name)
        blob.delete()
        return True
    except NotFound:
        logger.warning("File %s not found in bucket %s", blob_name, bucket_name)
        return False
    except Exception:
        logger.exception(
            "Error deleting file from bucket %s at %s",
            bucket_name,
            blob_name,
        )
        return False


def parse_gcs_url(url: str) -> tuple[str, str] | None:
    if not url:
        return None
    if url.startswith("gs://"):
        parts = url[5:].split("/", 1)
        if len(parts) != 2:
            return None
        return parts[0], parts[1]
    return None


def parse_public_url(url: str) -> tuple[str, str] | None:
    prefix = GCS_PUBLIC_BASE_URL.rstrip("/") + "/"
    if not url or not url.startswith(prefix):
        return None
    parts = url[len(prefix):].split("/", 1)
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[0], parts[1]


def _stream_to_file(resp: requests.Response, out_path: Path, chunk: int = 1 << 20) -> None:
    resp.raise_for_status()
    with open(out_path, "wb") as f:
        for b in resp.iter_content(chunk_size=chunk):
            if b:
                f.write(b)


def download_source(url: str, destination: Path) -> Path:
    """Fetch ``url`` (``gs://`` or ``http(s)://``) into ``destination``."""
    destination = Path(destination)
    parsed = parse_gcs_url(url) or parse_public_url(url)
    if parsed:
        bucket_name, blob_name = parsed
        try:
            _get_bucket(bucket_name).blob(blob_name).download_to_filename(str(destination))
        except Exception as exc:
            raise SourceDownloadError(f"Failed to download {url}: {exc}") from exc
        return destination

    if not url.lower().startswith(("http://", "https://")):
        raise SourceDownloadError(f"Unsupported source URL: {url}")

    try:
        with requests.get(url, stream=True, timeout=SOURCE_DOWNLOAD_TIMEOUT_SECONDS) as resp:
            _stream_to_file(resp, destination)
    except (requests.RequestException, OSError) as exc:
        raise SourceDownloadError(f"Failed to download {url}: {exc}") from exc
    return destination


