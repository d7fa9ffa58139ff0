# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Artifact publishing to Supabase Storage.

Publishing is three calls against the storage project:

1. Upload the recording to ``<bucket>/<job_id>/<file name>``
2. Mint a signed, time-limited URL for the object
3. Best-effort: write the URL into the job's metadata row

Only steps 1 and 2 can fail a publish. A failed metadata update is logged
and the signed URL is still returned.

Example:
    >>> publisher = ArtifactPublisher(StorageConfig(url=..., service_key=...))
    >>> artifact = await publisher.publish("/recordings/recording_v1.mp4", "v1")
    >>> artifact.url
    'https://xyz.supabase.co/storage/v1/object/sign/recordings/v1/...'
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from pagerecorder.core.config import StorageConfig
from pagerecorder.exceptions import MetadataUpdateFailure, UploadFailure
from pagerecorder.utils.clock import Clock, default_clock
from pagerecorder.utils.logger import logger


class SupabaseStorageClient:
    """Minimal async client for Supabase Storage and PostgREST."""

    def __init__(
        self,
        config: StorageConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return (self.config.url or "").rstrip("/")

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "apikey": self.config.service_key or "",
            "Authorization": f"Bearer {self.config.service_key}",
        }
        headers.update(extra)
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.request_timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def upload(self, object_path: str, data: bytes) -> None:
        """Upload (or overwrite) an object.

        Raises:
            UploadFailure: On any HTTP or transport error
        """
        session = await self._get_session()
        url = f"{self.base_url}/storage/v1/object/{self.config.bucket}/{object_path}"
        headers = self._headers(**{
            "Content-Type": self.config.content_type,
            "Cache-Control": f"max-age={self.config.cache_control}",
            "x-upsert": "true",
        })
        try:
            async with session.post(url, data=data, headers=headers, timeout=self._timeout()) as response:
                if response.status not in (200, 201):
                    body = await response.text()
                    raise UploadFailure(f"Upload failed ({response.status}): {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UploadFailure(f"Upload failed: {e}") from e

    async def create_signed_url(self, object_path: str, expires_in: int) -> str:
        """Mint a signed URL valid for expires_in seconds.

        Raises:
            UploadFailure: If the URL cannot be minted
        """
        session = await self._get_session()
        url = f"{self.base_url}/storage/v1/object/sign/{self.config.bucket}/{object_path}"
        try:
            async with session.post(
                url,
                json={"expiresIn": expires_in},
                headers=self._headers(),
                timeout=self._timeout(),
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise UploadFailure(f"Signing failed ({response.status}): {body[:200]}")
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UploadFailure(f"Signing failed: {e}") from e

        signed = None
        if isinstance(payload, dict):
            signed = payload.get("signedURL") or payload.get("signedUrl")
        if not signed:
            raise UploadFailure(f"Signing response has no URL: {payload!r}")
        if signed.startswith("/"):
            return f"{self.base_url}/storage/v1{signed}"
        return signed

    async def update_record(self, table: str, record_id: str, values: Dict[str, Any]) -> None:
        """PATCH the row whose id equals record_id.

        Raises:
            MetadataUpdateFailure: On any HTTP or transport error
        """
        session = await self._get_session()
        url = f"{self.base_url}/rest/v1/{table}"
        headers = self._headers(**{
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        })
        try:
            async with session.patch(
                url,
                params={"id": f"eq.{record_id}"},
                json=values,
                headers=headers,
                timeout=self._timeout(),
            ) as response:
                if response.status not in (200, 204):
                    body = await response.text()
                    raise MetadataUpdateFailure(
                        f"Metadata update failed ({response.status}): {body[:200]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MetadataUpdateFailure(f"Metadata update failed: {e}") from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


@dataclass
class PublishedArtifact:
    """Result of a successful publish.

    Attributes:
        object_path: Object key inside the bucket
        url: Signed access URL
        minted_at: Epoch seconds when the URL was requested
        expires_at: Epoch seconds when the URL stops working
        metadata_updated: Whether the metadata row received the URL
    """

    object_path: str
    url: str
    minted_at: float
    expires_at: float
    metadata_updated: bool = False


class ArtifactPublisher:
    """Uploads recordings and returns signed access URLs."""

    def __init__(
        self,
        config: StorageConfig,
        client: Optional[SupabaseStorageClient] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config
        self.client = client or SupabaseStorageClient(config)
        self.clock = clock or default_clock()

    @staticmethod
    def object_path(local_path: str, job_id: str) -> str:
        """Object key inside the bucket, one escaped path segment per part.

        Raises:
            UploadFailure: If job_id would be a relative path segment
        """
        if not job_id.strip("."):
            raise UploadFailure(f"Refusing to publish under job id {job_id!r}")
        return f"{quote(job_id, safe='')}/{quote(Path(local_path).name, safe='')}"

    async def publish(self, local_path: str, job_id: str) -> PublishedArtifact:
        """
        Upload a local recording and mint its access URL.

        Args:
            local_path: Recorded file
            job_id: Identifier keying the object and the metadata row

        Returns:
            The published artifact

        Raises:
            UploadFailure: If reading, uploading or signing fails
        """
        try:
            data = await asyncio.to_thread(Path(local_path).read_bytes)
        except OSError as e:
            raise UploadFailure(f"Cannot read artifact {local_path}: {e}") from e

        object_path = self.object_path(local_path, job_id)
        logger.info(
            f"[PUBLISHER] Uploading {len(data)} bytes to {self.config.bucket}/{object_path}"
        )
        await self.client.upload(object_path, data)

        ttl = self.config.signed_url_ttl
        minted_at = self.clock.time()
        url = await self.client.create_signed_url(object_path, ttl)
        logger.info(f"[PUBLISHER] Signed URL minted (expires in {ttl}s)")

        metadata_updated = False
        try:
            await self.client.update_record(
                self.config.metadata_table,
                job_id,
                {self.config.url_column: url},
            )
            metadata_updated = True
        except MetadataUpdateFailure as e:
            logger.warning(f"[PUBLISHER] {e} (job {job_id}); keeping signed URL")

        return PublishedArtifact(
            object_path=object_path,
            url=url,
            minted_at=minted_at,
            expires_at=minted_at + ttl,
            metadata_updated=metadata_updated,
        )

    async def close(self) -> None:
        await self.client.close()
