"""Document upload collaborators for document-grounded solves."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import requests

from .errors import APIError, ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentHandle:
    file_id: str
    filename: str
    mime_type: str = "application/octet-stream"


class DocumentStore(Protocol):
    """Uploads a document before a solve and removes it afterwards."""

    def upload(self, path: str | Path) -> DocumentHandle:
        ...

    def delete(self, handle: DocumentHandle) -> None:
        ...


@dataclass
class OpenAICompatFileStore:
    """File store for OpenAI-compatible ``/files`` endpoints."""

    base_url: str
    api_key: str | None = None
    timeout_sec: int = 120
    purpose: str = "user_data"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ConfigError("API key is not configured. Set STEPSOLVER_API_KEY (or API_KEY).")
        return {"Authorization": f"Bearer {self.api_key}"}

    def upload(self, path: str | Path) -> DocumentHandle:
        document = Path(path)
        if not document.is_file():
            raise FileNotFoundError(f"Document not found: {document}")

        mime_type = mimetypes.guess_type(document.name)[0] or "application/octet-stream"
        headers = self._headers()
        try:
            with document.open("rb") as handle:
                response = requests.post(
                    f"{self.base_url.rstrip('/')}/files",
                    headers=headers,
                    data={"purpose": self.purpose},
                    files={"file": (document.name, handle, mime_type)},
                    timeout=self.timeout_sec,
                )
        except requests.RequestException as exc:
            raise APIError(f"Document upload failed: {exc}") from exc

        if response.status_code >= 400:
            raise APIError(
                f"Document upload failed ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json() or {}
        except ValueError as exc:
            raise APIError(f"Document upload response was not JSON: {response.text[:200]}") from exc

        file_id = payload.get("id") if isinstance(payload, dict) else None
        if not file_id:
            raise APIError("Document upload response did not include a file id")

        logger.info("Uploaded document %s as %s", document.name, file_id)
        return DocumentHandle(file_id=str(file_id), filename=document.name, mime_type=mime_type)

    def delete(self, handle: DocumentHandle) -> None:
        try:
            response = requests.delete(
                f"{self.base_url.rstrip('/')}/files/{handle.file_id}",
                headers=self._headers(),
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise APIError(f"Document delete failed: {exc}") from exc

        if response.status_code >= 400 and response.status_code != 404:
            raise APIError(
                f"Document delete failed ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
            )
