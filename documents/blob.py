"""Blob document store backed by an HTTP blob API.

Documents are stored as public JSON blobs under their name, without a random
suffix, and overwritten in place. The blob API has no conditional write, so
writers rely on the per-document lock in DocumentStore.update().
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import backoff
import requests

from . import DocumentStore, DocumentStoreError

logger = logging.getLogger(__name__)

RETRYABLE = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)

class BlobDocumentStore(DocumentStore):
    """Document store over the blob HTTP API"""

    def __init__(self, api_url: str, token: str, timeout: float = 10):
        super().__init__()
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        if token:
            self.session.headers['authorization'] = f"Bearer {token}"

    def _list_blobs(self, prefix: str = '') -> List[Dict[str, Any]]:
        response = self.session.get(
            f"{self.api_url}/",
            params={'prefix': prefix} if prefix else None,
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json().get('blobs', [])

    @backoff.on_exception(backoff.expo, RETRYABLE, max_tries=3)
    def _read_sync(self, name: str) -> Optional[Dict[str, Any]]:
        blob = next((b for b in self._list_blobs(name) if b.get('pathname') == name), None)
        if blob is None:
            return None
        response = self.session.get(blob['url'], timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def _write_sync(self, name: str, document: Dict[str, Any]) -> None:
        response = self.session.put(
            f"{self.api_url}/{name}",
            data=json.dumps(document, indent=2),
            headers={
                'x-content-type': 'application/json',
                'x-add-random-suffix': '0',
                'x-allow-overwrite': '1',
                'x-access': 'public'
            },
            timeout=self.timeout
        )
        response.raise_for_status()

    async def _read(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._read_sync, name)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Failed to read blob {name}: {e}")
            raise DocumentStoreError(f"Failed to read document: {e}", name) from e

    async def _write(self, name: str, document: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write_sync, name, document)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to write blob {name}: {e}")
            raise DocumentStoreError(f"Failed to write document: {e}", name) from e

    async def _list(self) -> List[str]:
        try:
            blobs = await asyncio.to_thread(self._list_blobs)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise DocumentStoreError(f"Failed to list documents: {e}") from e
        return sorted(b['pathname'] for b in blobs if 'pathname' in b)
