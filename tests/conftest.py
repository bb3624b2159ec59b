"""Shared fixtures: an in-memory record provider and ready-made settings."""

import os
import sys
from typing import Any, Dict, List, Optional

import pytest
import sse_starlette

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipedrive_mcp.config import Settings
from pipedrive_mcp.crm.provider import CrmAPIError, RecordProvider

# sse-starlette 3.x keeps its exit event per context; older releases share one
SSE_STARLETTE_SHARES_EXIT_EVENT = int(sse_starlette.__version__.split(".")[0]) < 3


class FakeProvider(RecordProvider):
    """
    RecordProvider backed by dictionaries.

    Every call is recorded in ``calls`` as ``(method, args)``. Set
    ``failures[method]`` to an exception to make that method raise it.
    """

    base_url = "https://test.pipedrive.com/api/v1"

    def __init__(self):
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.users: List[Dict[str, Any]] = []
        self.deals: List[Dict[str, Any]] = []
        self.deal_search: Dict[str, Any] = {"items": []}
        self.notes: List[Dict[str, Any]] = []
        self.persons: List[Dict[str, Any]] = []
        self.organizations: List[Dict[str, Any]] = []
        self.pipelines: List[Dict[str, Any]] = []
        self.stages: Dict[int, List[Dict[str, Any]]] = {}
        self.search_results: Dict[str, Any] = {"items": []}
        self.created: List[Dict[str, Any]] = []

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def _find(self, records: List[Dict[str, Any]], record_id: int, kind: str) -> Dict[str, Any]:
        for record in records:
            if record.get("id") == record_id:
                return record
        raise CrmAPIError(404, "Not Found", {"success": False, "error": f"{kind} not found"})

    async def get_users(self):
        self._record("get_users")
        return self.users

    async def get_deals(self, status=None, user_id=None, stage_id=None, pipeline_id=None, limit=None, sort=None):
        self._record("get_deals", status, user_id, stage_id, pipeline_id, limit, sort)
        deals = [deal for deal in self.deals if status is None or deal.get("status") == status]
        if user_id is not None:
            deals = [deal for deal in deals if (deal.get("user_id") or {}).get("id") == user_id]
        if stage_id is not None:
            deals = [deal for deal in deals if deal.get("stage_id") == stage_id]
        if pipeline_id is not None:
            deals = [deal for deal in deals if deal.get("pipeline_id") == pipeline_id]
        return deals

    async def get_deal(self, deal_id):
        self._record("get_deal", deal_id)
        return self._find(self.deals, deal_id, "Deal")

    async def search_deals(self, term):
        self._record("search_deals", term)
        return self.deal_search

    async def get_notes(self, deal_id, limit=20):
        self._record("get_notes", deal_id, limit)
        return [note for note in self.notes if note.get("deal_id") == deal_id][:limit]

    async def get_persons(self):
        self._record("get_persons")
        return self.persons

    async def get_person(self, person_id):
        self._record("get_person", person_id)
        return self._find(self.persons, person_id, "Person")

    async def search_persons(self, term):
        self._record("search_persons", term)
        return self.search_results

    async def get_organizations(self):
        self._record("get_organizations")
        return self.organizations

    async def get_organization(self, organization_id):
        self._record("get_organization", organization_id)
        return self._find(self.organizations, organization_id, "Organization")

    async def search_organizations(self, term):
        self._record("search_organizations", term)
        return self.search_results

    async def get_pipelines(self):
        self._record("get_pipelines")
        return self.pipelines

    async def get_pipeline(self, pipeline_id):
        self._record("get_pipeline", pipeline_id)
        return self._find(self.pipelines, pipeline_id, "Pipeline")

    async def get_pipeline_stages(self, pipeline_id):
        self._record("get_pipeline_stages", pipeline_id)
        if pipeline_id not in self.stages:
            raise CrmAPIError(500, "Internal Server Error")
        return self.stages[pipeline_id]

    async def search_leads(self, term):
        self._record("search_leads", term)
        return self.search_results

    async def search_items(self, term, item_types: Optional[str] = None):
        self._record("search_items", term, item_types)
        return self.search_results

    async def create_deal(self, payload):
        self._record("create_deal", payload)
        created = {"id": 100 + len(self.created), **payload}
        self.created.append(created)
        return created

    async def create_person(self, payload):
        self._record("create_person", payload)
        created = {"id": 200 + len(self.created), **payload}
        self.created.append(created)
        return created

    async def create_organization(self, payload):
        self._record("create_organization", payload)
        created = {"id": 300 + len(self.created), **payload}
        self.created.append(created)
        return created


@pytest.fixture
def provider():
    """Fresh in-memory provider."""
    return FakeProvider()


@pytest.fixture
def settings():
    """Settings as parsed from a minimal environment."""
    return Settings.from_env({
        "PIPEDRIVE_API_TOKEN": "test-token",
        "PIPEDRIVE_DOMAIN": "test.pipedrive.com",
    })


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Give every test a fresh sse-starlette exit event so it binds to the test's own loop."""
    if not SSE_STARLETTE_SHARES_EXIT_EVENT:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None
