"""
Position backend transport.

``HttpPositionBackend`` talks to the REST position endpoints with httpx;
``InMemoryPositionBackend`` keeps records in process for offline use.
``HttpMilestoneClient`` implements the deadline-change callback against the
milestone endpoint.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Protocol, Tuple, Union

import httpx
from pydantic import TypeAdapter, ValidationError

from .config import ClientSettings
from .errors import PositionStoreError
from .models import NodeType, PositionUpsert, RemoteNodePosition

logger = logging.getLogger(__name__)

_POSITION_LIST = TypeAdapter(List[RemoteNodePosition])


class PositionBackend(Protocol):
    """Remote storage for normalized node positions."""

    async def fetch_positions(
        self, container_id: Optional[int], node_type: NodeType
    ) -> List[RemoteNodePosition]:
        ...

    async def upsert_position(self, upsert: PositionUpsert) -> None:
        ...

    async def reset_positions(self, container_id: Optional[int]) -> None:
        ...


def _auth_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


class HttpPositionBackend:
    """
    REST implementation of PositionBackend.

    Endpoints (relative to ``base_url``):
        GET    positions/?container=<id>&node_type=<type>
        POST   positions/
        DELETE positions/reset/?container=<id>

    Any transport error, non-2xx status or undecodable body is raised as
    PositionStoreError.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = _auth_headers(token)

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "HttpPositionBackend":
        return cls(settings.api_base_url, settings.access_token, settings.timeout)

    async def fetch_positions(
        self, container_id: Optional[int], node_type: NodeType
    ) -> List[RemoteNodePosition]:
        response = await self._request(
            "GET",
            "/positions/",
            params={"container": container_id, "node_type": node_type.value},
        )
        try:
            return _POSITION_LIST.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            raise PositionStoreError(f"Malformed position list: {exc}") from exc

    async def upsert_position(self, upsert: PositionUpsert) -> None:
        await self._request("POST", "/positions/", json=upsert.model_dump(mode="json"))

    async def reset_positions(self, container_id: Optional[int]) -> None:
        await self._request("DELETE", "/positions/reset/", params={"container": container_id})

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(
                method, f"{self.base_url}{path}", headers=self._headers, **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PositionStoreError(f"{method} {path} failed: {exc}") from exc
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


RecordKey = Tuple[Optional[int], NodeType, Union[int, str]]


class InMemoryPositionBackend:
    """Process-local PositionBackend, keyed like the REST store."""

    def __init__(self):
        self.records: Dict[RecordKey, RemoteNodePosition] = {}
        self.upserts: List[PositionUpsert] = []

    async def fetch_positions(
        self, container_id: Optional[int], node_type: NodeType
    ) -> List[RemoteNodePosition]:
        return [
            record
            for (container, record_type, _), record in self.records.items()
            if container == container_id and record_type == node_type
        ]

    async def upsert_position(self, upsert: PositionUpsert) -> None:
        self.upserts.append(upsert)
        self.records[(upsert.container, upsert.node_type, upsert.node_id)] = RemoteNodePosition(
            node_type=upsert.node_type,
            node_id=upsert.node_id,
            rel_y=upsert.rel_y,
            is_duplicate=upsert.is_duplicate,
            duplicate_key=upsert.duplicate_key or None,
            original_node_id=upsert.original_node_id,
        )

    async def reset_positions(self, container_id: Optional[int]) -> None:
        for key in [k for k in self.records if k[0] == container_id]:
            del self.records[key]


class HttpMilestoneClient:
    """Persists milestone deadline changes; usable as the deadline callback."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = _auth_headers(token)

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "HttpMilestoneClient":
        return cls(settings.api_base_url, settings.access_token, settings.timeout)

    async def update_deadline(self, milestone_id: str, new_deadline: date) -> bool:
        """PATCH the milestone's deadline; False on any failure."""
        try:
            response = await self._client.patch(
                f"{self.base_url}/milestones/{milestone_id}/",
                headers=self._headers,
                json={"deadline": new_deadline.isoformat()},
            )
        except httpx.HTTPError as exc:
            logger.warning("Deadline update for milestone %s failed: %s", milestone_id, exc)
            return False
        if not response.is_success:
            logger.warning(
                "Deadline update for milestone %s rejected with HTTP %s",
                milestone_id,
                response.status_code,
            )
            return False
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
