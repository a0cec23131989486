"""
ai/removebg.py
--------------
Client for the remove.bg background-removal API.

Responsibilities:
    - Upload the image as multipart form data with size/format options.
    - Return the processed image bytes.
    - Turn every transport or API failure into RemoveBgError.
"""

import requests

from utils.logger import get_logger

logger = get_logger(__name__)

API_URL = "https://api.remove.bg/v1.0/removebg"

_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


class RemoveBgError(Exception):
    """remove.bg could not process the image."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _api_error_detail(response: requests.Response) -> str:
    """Extract the first error title from a remove.bg JSON error body."""
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return response.text[:200]
    return errors[0].get("title", "unknown error") if errors else "unknown error"


def remove_background(
    image_bytes: bytes,
    filename: str,
    output_format: str,
    api_key: str,
    size: str = "auto",
    timeout: float = 60,
) -> bytes:
    """
    Send an image to remove.bg and get the cut-out image back.

    Args:
        image_bytes: Raw bytes of the uploaded image.
        filename: Original file name (sent as the multipart file name).
        output_format: 'png', 'jpg' or 'webp'.
        api_key: remove.bg API key.
        size: remove.bg size parameter ('auto', 'preview', 'full', ...).
        timeout: Request timeout in seconds.

    Returns:
        The processed image bytes.

    Raises:
        RemoveBgError: On missing key, network failure or non-200 response.
    """
    if not api_key:
        raise RemoveBgError("remove.bg API key is not configured")

    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    files = {
        "image_file": (filename, image_bytes, _MIME_TYPES.get(ext, "application/octet-stream")),
    }
    data = {"size": size, "format": output_format}

    try:
        response = requests.post(
            API_URL,
            files=files,
            data=data,
            headers={"X-Api-Key": api_key},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Remove.bg request failed: {e}")
        raise RemoveBgError(f"Failed to reach remove.bg: {e}") from e

    if response.status_code != 200:
        detail = _api_error_detail(response)
        logger.error(f"Remove.bg API error {response.status_code}: {detail}")
        raise RemoveBgError(
            f"Failed to process image with remove.bg API: {detail}",
            status_code=response.status_code,
        )

    logger.info(f"Remove.bg returned {len(response.content)} bytes ({output_format})")
    return response.content
