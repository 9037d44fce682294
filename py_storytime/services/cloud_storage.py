"""Cloud Storage service for story narration and profile images."""

import re
import urllib.parse

from common import config, utils
from google.cloud import storage as gcs

_client = None  # pylint: disable=invalid-name

_FILENAME_UNSAFE_RE = re.compile(r'[^a-zA-Z0-9._-]+')


def client() -> gcs.Client:
  """Get the Google Cloud Storage client."""
  global _client  # pylint: disable=global-statement
  if _client is None:
    _client = gcs.Client(project=config.PROJECT_ID)
  return _client


def parse_gcs_uri(gcs_uri: str) -> tuple[str, str]:
  """Parse a GCS URI into (bucket_name, blob_name).

  Args:
    gcs_uri: The GCS URI (gs://bucket/path/to/object)

  Returns:
    A tuple of (bucket_name, blob_name)

  Raises:
    ValueError: If the GCS URI format is invalid
  """
  if not gcs_uri.startswith("gs://"):
    raise ValueError(f"Invalid GCS URI format: {gcs_uri}")

  uri_parts = gcs_uri.removeprefix("gs://").split("/", 1)
  if len(uri_parts) != 2 or not uri_parts[0] or not uri_parts[1]:
    raise ValueError(f"Invalid GCS URI format: {gcs_uri}")

  return uri_parts[0], uri_parts[1]


def extract_gcs_uri_from_url(url: str) -> str:
  """Extract the GCS URI from a stored file URL.

  Supports:
    - GCS URIs: gs://bucket/object_path
    - Firebase download URLs:
      https://firebasestorage.googleapis.com/v0/b/<bucket>/o/<encoded_path>
    - Direct GCS URLs: https://storage.googleapis.com/<bucket>/<object_path>

  Raises:
    ValueError: If the URL does not point at a Cloud Storage object.
  """
  if url.startswith("gs://"):
    parse_gcs_uri(url)
    return url

  parsed = urllib.parse.urlparse(url)
  if parsed.netloc == "firebasestorage.googleapis.com":
    match = re.match(r"^/v0/b/([^/]+)/o/(.+)$", parsed.path)
    if match:
      object_path = urllib.parse.unquote(match.group(2))
      return f"gs://{match.group(1)}/{object_path}"
  elif parsed.netloc == config.PUBLIC_STORAGE_HOST:
    parts = parsed.path.lstrip("/").split("/", 1)
    if len(parts) == 2 and parts[0] and parts[1]:
      return f"gs://{parts[0]}/{urllib.parse.unquote(parts[1])}"

  raise ValueError(f"Not a Cloud Storage URL: {url}")


def upload_bytes_to_gcs(
  content_bytes: bytes,
  gcs_uri: str,
  content_type: str,
) -> str:
  """Upload bytes to Google Cloud Storage.

  Args:
    content_bytes: The data as bytes
    gcs_uri: The target GCS URI (gs://bucket/path/file.ext)
    content_type: The MIME type of the data

  Returns:
    The final GCS URI of the uploaded file

  Raises:
    ValueError: If the GCS URI format is invalid
  """
  bucket_name, blob_name = parse_gcs_uri(gcs_uri)

  bucket = client().bucket(bucket_name)
  blob = bucket.blob(blob_name)
  blob.upload_from_string(content_bytes, content_type=content_type)

  return gcs_uri


def get_public_url(gcs_uri: str) -> str:
  """Get a public URL for a GCS URI."""
  bucket_name, blob_name = parse_gcs_uri(gcs_uri)
  bucket = client().bucket(bucket_name)
  blob = bucket.blob(blob_name)
  return blob.public_url


def delete_file(gcs_uri_or_url: str) -> None:
  """Delete a stored file given its GCS URI or download URL."""
  gcs_uri = extract_gcs_uri_from_url(gcs_uri_or_url)
  bucket_name, blob_name = parse_gcs_uri(gcs_uri)
  client().bucket(bucket_name).blob(blob_name).delete()


def _object_uri(prefix: str, owner_id: str, filename: str) -> str:
  owner_id = (owner_id or '').strip()
  if not owner_id:
    raise ValueError("owner id is required")
  safe_name = _FILENAME_UNSAFE_RE.sub('_', filename or '').strip('_') or 'file'
  return (f"gs://{config.MEDIA_BUCKET_NAME}/{prefix}/{owner_id}/"
          f"{utils.timestamp_ms()}_{safe_name}")


def profile_image_gcs_uri(user_id: str, filename: str) -> str:
  """GCS URI for a new parent profile image."""
  return _object_uri(config.PROFILE_IMAGES_PREFIX, user_id, filename)


def child_profile_image_gcs_uri(child_id: str, filename: str) -> str:
  """GCS URI for a new child profile image."""
  return _object_uri(config.CHILD_PROFILE_IMAGES_PREFIX, child_id, filename)


def story_audio_gcs_uri(story_id: str) -> str:
  """GCS URI for a new narration recording of a story."""
  return _object_uri(config.STORY_AUDIO_PREFIX, story_id, "narration.mp3")
