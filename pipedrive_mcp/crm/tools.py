"""
Pipedrive tools exposed over MCP.

Every handler takes its validated input model and a ``ToolContext`` and
returns a ``ToolResult``. Upstream failures (``CrmError``) and records that do
not parse are reported as error results (``isError: true``) with a readable
message; nothing here raises into the transport.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Type

from pydantic import ValidationError

from pipedrive_mcp.crm.models import (
    CreateDealInput,
    CreateOrganizationInput,
    CreatePersonInput,
    Deal,
    DealIdInput,
    DealNotesInput,
    EmptyInput,
    GetDealsInput,
    Note,
    Organization,
    OrganizationIdInput,
    Person,
    PersonIdInput,
    Pipeline,
    PipelineIdInput,
    Record,
    SearchAllInput,
    Stage,
    TermInput,
    User,
)
from pipedrive_mcp.crm.provider import CrmAPIError, CrmError, RecordProvider
from pipedrive_mcp.mcp.catalog import ToolCatalog, ToolResult

logger = logging.getLogger(__name__)

# Deals returned in full by get-deals; the rest are only counted
MAX_SUMMARIZED_DEALS = 30

HANDLED_ERRORS = (CrmError, ValidationError)

catalog = ToolCatalog()


@dataclass(frozen=True)
class ToolContext:
    """What a handler may use: the (rate-limited) provider and field options."""
    provider: RecordProvider
    booking_field_key: Optional[str] = None


def _records(model: Type[Record]) -> Callable[[Any], List[Dict[str, Any]]]:
    def shape(data: Any) -> List[Dict[str, Any]]:
        return [model.model_validate(item).to_dict() for item in data or []]
    return shape


def _record(model: Type[Record]) -> Callable[[Any], Dict[str, Any]]:
    def shape(data: Any) -> Dict[str, Any]:
        return model.model_validate(data).to_dict()
    return shape


def _raw(data: Any) -> Any:
    return data


async def _respond(
    action: str,
    operation: Awaitable[Any],
    shape: Callable[[Any], Any] = _raw,
) -> ToolResult:
    """Await an upstream call and render it as JSON, or as an error result."""
    try:
        data = shape(await operation)
    except HANDLED_ERRORS as exc:
        logger.error("Error %s: %s", action, exc)
        return ToolResult.failure(f"Error {action}: {exc}")
    return ToolResult.success_json(data)


def _search_items(data: Any) -> List[Dict[str, Any]]:
    """Unwrap ``{"items": [{"result_score", "item"}]}`` search results."""
    if not isinstance(data, dict):
        return []
    return [entry["item"] for entry in data.get("items") or [] if isinstance(entry, dict) and "item" in entry]


def _activity_date(deal: Deal) -> Optional[date]:
    if not deal.last_activity_date:
        return None
    try:
        return date.fromisoformat(deal.last_activity_date[:10])
    except ValueError:
        return None


def filter_deals(
    deals: List[Deal],
    params: GetDealsInput,
    applied: Set[str],
    activity_cutoff: Optional[date] = None,
) -> List[Deal]:
    """
    Apply every requested deal filter that the upstream did not already apply.

    Args:
        deals: Deals as returned by the list or search endpoint
        params: The tool input
        applied: Names of filters the upstream request already enforced
        activity_cutoff: Drop deals whose last activity is older (or missing)

    Returns:
        Matching deals, truncated to ``params.limit``
    """
    checks = []
    if "status" not in applied:
        checks.append(lambda deal: deal.status == params.status)
    if params.owner_id is not None and "owner_id" not in applied:
        checks.append(lambda deal: deal.owner_id == params.owner_id)
    if params.stage_id is not None and "stage_id" not in applied:
        checks.append(lambda deal: deal.stage_id == params.stage_id)
    if params.pipeline_id is not None and "pipeline_id" not in applied:
        checks.append(lambda deal: deal.pipeline_id == params.pipeline_id)
    if activity_cutoff is not None:
        checks.append(lambda deal: (_activity_date(deal) or date.min) >= activity_cutoff)
    if params.min_value is not None:
        checks.append(lambda deal: (deal.value or 0.0) >= params.min_value)
    if params.max_value is not None:
        checks.append(lambda deal: (deal.value or 0.0) <= params.max_value)

    matching = [deal for deal in deals if all(check(deal) for check in checks)]
    return matching[: params.limit]


# === TOOLS ===


@catalog.tool(
    "get-users",
    "Get all users/owners from Pipedrive to identify owner IDs for filtering deals",
    EmptyInput,
)
async def get_users(params: EmptyInput, ctx: ToolContext) -> ToolResult:
    try:
        users = [User.model_validate(item) for item in await ctx.provider.get_users()]
    except HANDLED_ERRORS as exc:
        logger.error("Error fetching users: %s", exc)
        return ToolResult.failure(f"Error fetching users: {exc}")

    return ToolResult.success_json({
        "summary": f"Found {len(users)} users in your Pipedrive account",
        "users": [user.summary() for user in users],
    })


@catalog.tool(
    "get-deals",
    "Get deals from Pipedrive with flexible filtering options including search by title, "
    "date range, owner, stage, status, and more. Use 'get-users' tool first to find owner IDs.",
    GetDealsInput,
)
async def get_deals(params: GetDealsInput, ctx: ToolContext) -> ToolResult:
    activity_cutoff = None
    try:
        if params.search_title:
            # The search endpoint filters by title only
            found = await ctx.provider.search_deals(params.search_title)
            deals = [Deal.model_validate(item) for item in _search_items(found)]
            applied: Set[str] = set()
        else:
            activity_cutoff = date.today() - timedelta(days=params.days_back)
            found = await ctx.provider.get_deals(
                status=params.status,
                user_id=params.owner_id,
                stage_id=params.stage_id,
                pipeline_id=params.pipeline_id,
                limit=params.limit,
                sort="last_activity_date DESC",
            )
            deals = [Deal.model_validate(item) for item in found]
            applied = {"status", "owner_id", "stage_id", "pipeline_id"}
    except HANDLED_ERRORS as exc:
        logger.error("Error fetching deals: %s", exc)
        return ToolResult.failure(f"Error fetching deals: {exc}")

    deals = filter_deals(deals, params, applied, activity_cutoff)

    filters: Dict[str, Any] = {}
    if params.search_title:
        filters["search_title"] = params.search_title
    else:
        filters["days_back"] = params.days_back
        filters["filter_date"] = activity_cutoff.isoformat()
    filters["status"] = params.status
    optional_filters = {
        "owner_id": params.owner_id,
        "stage_id": params.stage_id,
        "pipeline_id": params.pipeline_id,
        "min_value": params.min_value,
        "max_value": params.max_value,
    }
    filters.update({key: value for key, value in optional_filters.items() if value is not None})
    filters["total_deals_found"] = len(deals)
    filters["limit_applied"] = params.limit

    if params.search_title:
        summary = f'Found {len(deals)} deals matching title search "{params.search_title}"'
    else:
        summary = f"Found {len(deals)} deals matching the specified filters"

    return ToolResult.success_json({
        "summary": summary,
        "filters_applied": filters,
        "total_found": len(deals),
        "deals": [deal.summary(ctx.booking_field_key) for deal in deals[:MAX_SUMMARIZED_DEALS]],
    })


@catalog.tool("get-deal", "Get a specific deal by ID including custom fields", DealIdInput)
async def get_deal(params: DealIdInput, ctx: ToolContext) -> ToolResult:
    return await _respond(
        f"fetching deal {params.deal_id}", ctx.provider.get_deal(params.deal_id), _record(Deal)
    )


@catalog.tool(
    "get-deal-notes",
    "Get detailed notes and custom booking details for a specific deal",
    DealNotesInput,
)
async def get_deal_notes(params: DealNotesInput, ctx: ToolContext) -> ToolResult:
    result: Dict[str, Any] = {
        "deal_id": params.deal_id,
        "notes": [],
        "booking_details": None,
    }

    try:
        deal = Deal.model_validate(await ctx.provider.get_deal(params.deal_id))
        if ctx.booking_field_key:
            result["booking_details"] = (deal.model_extra or {}).get(ctx.booking_field_key)
    except HANDLED_ERRORS as exc:
        logger.error("Error fetching deal details for %s: %s", params.deal_id, exc)
        result["deal_error"] = str(exc)

    try:
        notes = await ctx.provider.get_notes(params.deal_id, limit=params.limit)
        result["notes"] = [Note.model_validate(note).to_dict() for note in notes]
    except HANDLED_ERRORS as exc:
        logger.error("Error fetching notes for deal %s: %s", params.deal_id, exc)
        result["notes_error"] = str(exc)

    return ToolResult.success_json({
        "summary": f"Retrieved {len(result['notes'])} notes and booking details for deal {params.deal_id}",
        **result,
    })


@catalog.tool("search-deals", "Search deals by term", TermInput)
async def search_deals(params: TermInput, ctx: ToolContext) -> ToolResult:
    return await _respond("searching deals", ctx.provider.search_deals(params.term))


@catalog.tool("get-persons", "Get all persons from Pipedrive including custom fields", EmptyInput)
async def get_persons(params: EmptyInput, ctx: ToolContext) -> ToolResult:
    return await _respond("fetching persons", ctx.provider.get_persons(), _records(Person))


@catalog.tool("get-person", "Get a specific person by ID including custom fields", PersonIdInput)
async def get_person(params: PersonIdInput, ctx: ToolContext) -> ToolResult:
    return await _respond(
        f"fetching person {params.person_id}",
        ctx.provider.get_person(params.person_id),
        _record(Person),
    )


@catalog.tool("search-persons", "Search persons by term", TermInput)
async def search_persons(params: TermInput, ctx: ToolContext) -> ToolResult:
    return await _respond("searching persons", ctx.provider.search_persons(params.term))


@catalog.tool(
    "get-organizations", "Get all organizations from Pipedrive including custom fields", EmptyInput
)
async def get_organizations(params: EmptyInput, ctx: ToolContext) -> ToolResult:
    return await _respond(
        "fetching organizations", ctx.provider.get_organizations(), _records(Organization)
    )


@catalog.tool(
    "get-organization",
    "Get a specific organization by ID including custom fields",
    OrganizationIdInput,
)
async def get_organization(params: OrganizationIdInput, ctx: ToolContext) -> ToolResult:
    return await _respond(
        f"fetching organization {params.organization_id}",
        ctx.provider.get_organization(params.organization_id),
        _record(Organization),
    )


@catalog.tool("search-organizations", "Search organizations by term", TermInput)
async def search_organizations(params: TermInput, ctx: ToolContext) -> ToolResult:
    return await _respond("searching organizations", ctx.provider.search_organizations(params.term))


@catalog.tool("get-pipelines", "Get all pipelines from Pipedrive", EmptyInput)
async def get_pipelines(params: EmptyInput, ctx: ToolContext) -> ToolResult:
    return await _respond("fetching pipelines", ctx.provider.get_pipelines(), _records(Pipeline))


@catalog.tool("get-pipeline", "Get a specific pipeline by ID", PipelineIdInput)
async def get_pipeline(params: PipelineIdInput, ctx: ToolContext) -> ToolResult:
    return await _respond(
        f"fetching pipeline {params.pipeline_id}",
        ctx.provider.get_pipeline(params.pipeline_id),
        _record(Pipeline),
    )


@catalog.tool("get-stages", "Get all stages from Pipedrive", EmptyInput)
async def get_stages(params: EmptyInput, ctx: ToolContext) -> ToolResult:
    try:
        pipelines = [Pipeline.model_validate(item) for item in await ctx.provider.get_pipelines()]
    except HANDLED_ERRORS as exc:
        logger.error("Error fetching stages: %s", exc)
        return ToolResult.failure(f"Error fetching stages: {exc}")

    stages: List[Dict[str, Any]] = []
    for pipeline in pipelines:
        try:
            found = await ctx.provider.get_pipeline_stages(pipeline.id)
            for item in found if isinstance(found, list) else []:
                stage = Stage.model_validate({**item, "pipeline_name": pipeline.name})
                stages.append(stage.to_dict())
        except HANDLED_ERRORS as exc:
            logger.error("Error fetching stages for pipeline %s: %s", pipeline.id, exc)

    return ToolResult.success_json(stages)


@catalog.tool("search-leads", "Search leads by term", TermInput)
async def search_leads(params: TermInput, ctx: ToolContext) -> ToolResult:
    return await _respond("searching leads", ctx.provider.search_leads(params.term))


@catalog.tool(
    "search-all",
    "Search across all item types (deals, persons, organizations, etc.)",
    SearchAllInput,
)
async def search_all(params: SearchAllInput, ctx: ToolContext) -> ToolResult:
    return await _respond(
        "performing search", ctx.provider.search_items(params.term, item_types=params.item_types)
    )


async def _create(kind: str, operation: Awaitable[Any]) -> ToolResult:
    try:
        created = await operation
    except CrmAPIError as exc:
        logger.error("Error creating %s: %s", kind, exc)
        return ToolResult.failure(f"Error creating {kind}: {exc.describe()}")
    except CrmError as exc:
        logger.error("Error creating %s: %s", kind, exc)
        return ToolResult.failure(f"Error creating {kind}: {exc}")

    return ToolResult.success(
        f"{kind.capitalize()} created successfully!\n\n{json.dumps(created, indent=2, default=str)}"
    )


@catalog.tool("create-deal", "Create a new deal in Pipedrive", CreateDealInput)
async def create_deal(params: CreateDealInput, ctx: ToolContext) -> ToolResult:
    return await _create("deal", ctx.provider.create_deal(params.to_payload()))


@catalog.tool("create-person", "Create a new person/contact in Pipedrive", CreatePersonInput)
async def create_person(params: CreatePersonInput, ctx: ToolContext) -> ToolResult:
    return await _create("person", ctx.provider.create_person(params.to_payload()))


@catalog.tool(
    "create-organization",
    "Create a new organization/company in Pipedrive",
    CreateOrganizationInput,
)
async def create_organization(params: CreateOrganizationInput, ctx: ToolContext) -> ToolResult:
    return await _create("organization", ctx.provider.create_organization(params.to_payload()))
