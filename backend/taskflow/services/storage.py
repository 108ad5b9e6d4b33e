"""Client for the hosted object storage REST API."""

from urllib.parse import quote

import httpx
import structlog

from taskflow.exceptions import UpstreamError
from taskflow.services.service_role import ServiceRole

logger = structlog.get_logger()


class StorageClient:
    """Upload, remove and resolve public URLs for attachment objects.

    All calls authenticate with the service-role key. ``transport`` lets
    callers swap the network layer (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        service_role: ServiceRole,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.service_role = service_role
        self.base_url = service_role.storage_url
        self.bucket = service_role.bucket
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.service_role.timeout,
            headers=self.service_role.auth_headers(),
            transport=self._transport,
        )

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/object/{self.bucket}/{quote(path)}"

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        """Upload bytes to ``path``. Existing objects are never overwritten."""
        try:
            async with self._client() as client:
                response = await client.post(
                    self._object_url(path),
                    content=content,
                    headers={
                        "Content-Type": content_type,
                        "Cache-Control": "max-age=3600",
                        "x-upsert": "false",
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "storage_upload_failed",
                path=path,
                status=e.response.status_code,
            )
            raise UpstreamError(_error_message(e.response), service="storage") from e
        except httpx.HTTPError as e:
            logger.error("storage_upload_failed", path=path, error=str(e))
            raise UpstreamError(str(e), service="storage") from e

        logger.debug("storage_object_uploaded", path=path, size=len(content))
        return path

    async def remove(self, paths: list[str]) -> None:
        """Delete objects by path."""
        if not paths:
            return
        try:
            async with self._client() as client:
                response = await client.request(
                    "DELETE",
                    f"{self.base_url}/object/{self.bucket}",
                    json={"prefixes": paths},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "storage_remove_failed",
                paths=paths,
                status=e.response.status_code,
            )
            raise UpstreamError(_error_message(e.response), service="storage") from e
        except httpx.HTTPError as e:
            logger.error("storage_remove_failed", paths=paths, error=str(e))
            raise UpstreamError(str(e), service="storage") from e

        logger.debug("storage_objects_removed", count=len(paths))

    def get_public_url(self, path: str) -> str:
        """Public URL for an object. Pure string lookup, no request is made."""
        return f"{self.base_url}/object/public/{self.bucket}/{quote(path)}"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Storage request failed with status {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
