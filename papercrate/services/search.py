"""Search index ingest client (Quickwit)."""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from papercrate.errors import SearchIndexError

logger = logging.getLogger(__name__)


class SearchIndexClient:
    """Client that pushes one document at a time into a Quickwit index."""

    def __init__(
        self,
        endpoint: str,
        index: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the search client."""
        self.endpoint = endpoint.rstrip("/")
        self.index = index
        self.timeout = timeout
        self.transport = transport

    @property
    def ingest_url(self) -> str:
        return f"{self.endpoint}/api/v1/{self.index}/ingest"

    def ingest(self, document: Dict[str, Any]) -> None:
        """
        Submit a single document for indexing.

        Args:
            document: JSON document with document_id, version_id, title, text

        Raises:
            SearchIndexError: On network errors or non-2xx responses
        """
        body = json.dumps(document, default=str) + "\n"

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    self.ingest_url,
                    params={"commit": "auto"},
                    headers={"content-type": "application/x-ndjson"},
                    content=body.encode("utf-8"),
                )
        except httpx.HTTPError as e:
            raise SearchIndexError(f"search ingest request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Search ingest failed with status {response.status_code}: {response.text[:500]}")
            raise SearchIndexError(
                f"search ingest failed with status {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(f"Indexed document {document.get('document_id')} into {self.index}")
