"""
Record provider for the Pipedrive REST API (v1).

``RecordProvider`` is the capability the tool handlers depend on; the
concrete ``PipedriveClient`` talks to Pipedrive over httpx. Every method
returns the ``data`` member of Pipedrive's ``{success, data}`` envelope and
raises a ``CrmError`` subclass on failure.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "pipedrive-mcp-server/1.0.2"


class CrmError(Exception):
    """Base class for upstream failures."""


class CrmConnectionError(CrmError):
    """The request never produced an HTTP response."""


class CrmResponseError(CrmError):
    """The upstream answered with something that is not a Pipedrive envelope."""


class CrmAPIError(CrmError):
    """Pipedrive answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str, payload: Any = None):
        self.status_code = status_code
        self.reason = reason
        self.payload = payload
        detail = ""
        if isinstance(payload, dict) and payload.get("error"):
            detail = f": {payload['error']}"
        super().__init__(f"HTTP {status_code} {reason}{detail}")

    def describe(self) -> str:
        """Status line plus the response body, for create-style errors."""
        if self.payload is None:
            return f"HTTP {self.status_code} {self.reason}"
        return f"HTTP {self.status_code} {self.reason}\n\n{json.dumps(self.payload, indent=2)}"


class RecordProvider(ABC):
    """Operations the tools need from the CRM."""

    base_url: str

    @abstractmethod
    async def get_users(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def get_deals(
        self,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        stage_id: Optional[int] = None,
        pipeline_id: Optional[int] = None,
        limit: Optional[int] = None,
        sort: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def get_deal(self, deal_id: int) -> Dict[str, Any]: ...

    @abstractmethod
    async def search_deals(self, term: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_notes(self, deal_id: int, limit: int = 20) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def get_persons(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def get_person(self, person_id: int) -> Dict[str, Any]: ...

    @abstractmethod
    async def search_persons(self, term: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_organizations(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def get_organization(self, organization_id: int) -> Dict[str, Any]: ...

    @abstractmethod
    async def search_organizations(self, term: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_pipelines(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def get_pipeline(self, pipeline_id: int) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_pipeline_stages(self, pipeline_id: int) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def search_leads(self, term: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def search_items(self, term: str, item_types: Optional[str] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_deal(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_person(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_organization(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...


def _drop_none(params: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class PipedriveClient(RecordProvider):
    """
    Async Pipedrive API client.

    Authenticates with the ``api_token`` query parameter. Use as an async
    context manager, or call ``aclose()`` when done.
    """

    def __init__(
        self,
        api_token: str,
        domain: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_token: Pipedrive API token
            domain: Company domain, e.g. ``acme.pipedrive.com``
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.domain = domain
        self.base_url = f"https://{domain}/api/v1"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            params={"api_token": api_token},
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "PipedriveClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, path, params=_drop_none(params or {}), json=body
            )
        except httpx.HTTPError as exc:
            raise CrmConnectionError(f"{method} {path} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            logger.warning("%s %s -> HTTP %s", method, path, response.status_code)
            raise CrmAPIError(response.status_code, response.reason_phrase, payload)
        if not isinstance(payload, dict):
            raise CrmResponseError(f"{method} {path} returned a non-JSON-object body")
        if payload.get("success") is False:
            raise CrmAPIError(response.status_code, response.reason_phrase, payload)
        return payload.get("data")

    async def _list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        # Pipedrive returns "data": null for empty collections
        return await self._request("GET", path, params=params) or []

    async def get_users(self) -> List[Dict[str, Any]]:
        return await self._list("/users")

    async def get_deals(
        self,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        stage_id: Optional[int] = None,
        pipeline_id: Optional[int] = None,
        limit: Optional[int] = None,
        sort: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/deals",
            {
                "status": status,
                "user_id": user_id,
                "stage_id": stage_id,
                "pipeline_id": pipeline_id,
                "limit": limit,
                "sort": sort,
            },
        )

    async def get_deal(self, deal_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/deals/{deal_id}")

    async def search_deals(self, term: str) -> Dict[str, Any]:
        return await self._request("GET", "/deals/search", params={"term": term})

    async def get_notes(self, deal_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        return await self._list("/notes", {"deal_id": deal_id, "limit": limit})

    async def get_persons(self) -> List[Dict[str, Any]]:
        return await self._list("/persons")

    async def get_person(self, person_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/persons/{person_id}")

    async def search_persons(self, term: str) -> Dict[str, Any]:
        return await self._request("GET", "/persons/search", params={"term": term})

    async def get_organizations(self) -> List[Dict[str, Any]]:
        return await self._list("/organizations")

    async def get_organization(self, organization_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/organizations/{organization_id}")

    async def search_organizations(self, term: str) -> Dict[str, Any]:
        return await self._request("GET", "/organizations/search", params={"term": term})

    async def get_pipelines(self) -> List[Dict[str, Any]]:
        return await self._list("/pipelines")

    async def get_pipeline(self, pipeline_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/pipelines/{pipeline_id}")

    async def get_pipeline_stages(self, pipeline_id: int) -> List[Dict[str, Any]]:
        return await self._list("/stages", {"pipeline_id": pipeline_id})

    async def search_leads(self, term: str) -> Dict[str, Any]:
        return await self._request("GET", "/leads/search", params={"term": term})

    async def search_items(self, term: str, item_types: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "GET", "/itemSearch", params={"term": term, "item_types": item_types}
        )

    async def create_deal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/deals", body=payload)

    async def create_person(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/persons", body=payload)

    async def create_organization(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/organizations", body=payload)
