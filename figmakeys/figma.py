"""Figma REST API access."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import requests

from .errors import DocumentAccessError, DocumentNotFoundError, DocumentSourceError

FIGMA_API_BASE = "https://api.figma.com/v1"
FILE_ID_PATTERN = re.compile(r"figma\.com/(?:file|design)/([a-zA-Z0-9]+)")


def extract_file_id(url: str) -> Optional[str]:
    """Return the file key of a ``figma.com/file`` or ``figma.com/design`` URL."""

    match = FILE_ID_PATTERN.search(url)
    return match.group(1) if match else None


def extract_node_id(url: str) -> Optional[str]:
    """Return the ``node-id`` query parameter in Figma's internal ``1:2`` form."""

    try:
        query = urlparse(url).query
    except ValueError:
        return None
    values = parse_qs(query).get("node-id")
    if not values or not values[0]:
        return None
    return values[0].replace("-", ":", 1)


class FigmaClient:
    """Fetches Figma files, trying public access before the access token."""

    def __init__(
        self,
        *,
        token: str | None = None,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, file_id: str, headers: Dict[str, str]) -> requests.Response:
        try:
            return self.session.get(
                f"{FIGMA_API_BASE}/files/{file_id}",
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DocumentSourceError(
                f"Failed to fetch Figma file. Please check the URL and try again. ({exc})"
            ) from exc

    def fetch_file(self, file_id: str) -> Dict[str, Any]:
        """Return the decoded file payload for ``file_id``."""

        public_response = self._get(file_id, {})
        if public_response.ok:
            return self._decode(public_response)

        if self.token:
            private_response = self._get(file_id, {"X-Figma-Token": self.token})
            if private_response.ok:
                return self._decode(private_response)
            if private_response.status_code == 403:
                raise DocumentAccessError(
                    "Access denied. This file may be private or the API token is invalid."
                )
            if private_response.status_code == 404:
                raise DocumentNotFoundError(
                    f"Figma file {file_id} was not found. Please check the URL."
                )
            raise DocumentSourceError(
                f"Failed to fetch Figma file: {private_response.reason}"
            )

        if public_response.status_code in {403, 404}:
            raise DocumentAccessError(
                "Unable to access this Figma file. Please ensure the file URL is "
                'correct and the file is set to "Anyone with the link can view" '
                "in Figma sharing settings, or provide an API token."
            )

        raise DocumentSourceError(
            f"Failed to fetch Figma file: {public_response.reason}"
        )

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise DocumentSourceError(
                "Figma returned a response that is not valid JSON."
            ) from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("document"), dict):
            raise DocumentSourceError(
                "Figma returned a file without a document tree."
            )
        return payload
