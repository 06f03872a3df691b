"""Download notice documents and lay them out on disk."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from pathlib import Path

import requests

from .errors import DownloadFailed

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".pdf"
USER_AGENT = "NoticeWatcher/1.0"


def document_filename(notice_id: str) -> str:
    name = notice_id.replace("/", "_").replace("\\", "_")
    if name.lower().endswith(DOCUMENT_SUFFIX):
        return name
    return f"{name}{DOCUMENT_SUFFIX}"


@dataclass
class DocumentFetcher:
    """Retrieve notice PDFs and store them under ``root``.

    Files land at ``<root>/<operator>/<route>/<year>/<month>/<notice>.pdf``,
    where year and month come from the observation timestamp.
    """

    root: Path
    timeout: float = 30
    session: requests.Session = field(default_factory=requests.Session)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.session.headers.update({"User-Agent": USER_AGENT})

    def fetch(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DownloadFailed(f"GET {url} failed: {exc}") from exc
        return response.content

    def document_path(
        self,
        operator_code: str,
        route: str,
        notice_id: str,
        observed_at: dt.datetime,
    ) -> Path:
        return (
            self.root
            / operator_code
            / route
            / f"{observed_at.year:04d}"
            / f"{observed_at.month:02d}"
            / document_filename(notice_id)
        )

    def persist(
        self,
        operator_code: str,
        route: str,
        notice_id: str,
        content: bytes,
        observed_at: dt.datetime,
    ) -> Path:
        path = self.document_path(operator_code, route, notice_id, observed_at)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.debug("Wrote %d bytes to %s", len(content), path)
        return path

    def download(
        self,
        url: str,
        operator_code: str,
        route: str,
        notice_id: str,
        observed_at: dt.datetime,
    ) -> Path:
        """Fetch ``url`` and persist it; any failure surfaces as DownloadFailed."""
        content = self.fetch(url)
        try:
            return self.persist(operator_code, route, notice_id, content, observed_at)
        except OSError as exc:
            raise DownloadFailed(
                f"could not write {operator_code}/{route}/{notice_id}: {exc}"
            ) from exc
