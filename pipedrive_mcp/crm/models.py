"""
Pydantic models for Pipedrive records and tool inputs.

Records keep the fields the tools reason about explicit and optional, and let
account-specific custom fields (40-character hash keys in Pipedrive) pass
through untouched. Tool input models double as the advertised JSON schema and
as the validator applied before a handler runs.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


def _ref_id(value: Any) -> Optional[int]:
    """Pipedrive returns references either as ids or as ``{id|value, name}`` objects."""
    if isinstance(value, dict):
        value = value.get("id", value.get("value"))
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _ref_name(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        name = value.get("name")
        return name if isinstance(name, str) else None
    return None


# === RECORDS ===


class Record(BaseModel):
    """Base for every CRM record; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class User(Record):
    name: Optional[str] = None
    email: Optional[str] = None
    active_flag: Optional[bool] = None
    role_name: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "active_flag": self.active_flag,
            "role_name": self.role_name,
        }


class Deal(Record):
    """
    A deal from either the list endpoint or the search endpoint.

    The list endpoint returns ``user_id``/``person_id``/``org_id`` objects and
    flat ``stage_id``/``pipeline_id``; the search endpoint nests ``owner``,
    ``stage``, ``person`` and ``organization`` objects. Both are normalized to
    the flat fields below.
    """

    title: Optional[str] = None
    value: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    stage_id: Optional[int] = None
    stage_name: Optional[str] = None
    pipeline_id: Optional[int] = None
    pipeline_name: Optional[str] = None
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    person_name: Optional[str] = None
    org_name: Optional[str] = None
    add_time: Optional[str] = None
    last_activity_date: Optional[str] = None
    close_time: Optional[str] = None
    won_time: Optional[str] = None
    lost_time: Optional[str] = None
    notes_count: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_references(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        owner = data.get("owner", data.get("user_id"))
        if data.get("owner_id") is None:
            data["owner_id"] = _ref_id(owner)
        else:
            data["owner_id"] = _ref_id(data["owner_id"])
        data.setdefault("owner_name", _ref_name(owner))

        stage = data.get("stage")
        if data.get("stage_id") is None and stage is not None:
            data["stage_id"] = _ref_id(stage)
        data.setdefault("stage_name", _ref_name(stage))

        pipeline = data.get("pipeline")
        if data.get("pipeline_id") is None and pipeline is not None:
            data["pipeline_id"] = _ref_id(pipeline)
        data.setdefault("pipeline_name", _ref_name(pipeline))

        if data.get("person_name") is None:
            data["person_name"] = _ref_name(data.get("person") or data.get("person_id"))
        if data.get("org_name") is None:
            data["org_name"] = _ref_name(data.get("organization") or data.get("org_id"))

        if isinstance(data.get("value"), str):
            try:
                data["value"] = float(data["value"])
            except ValueError:
                data["value"] = None
        return data

    def summary(self, booking_field_key: Optional[str] = None) -> Dict[str, Any]:
        extra = self.model_extra or {}
        summary = {
            "id": self.id,
            "title": self.title,
            "value": self.value,
            "currency": self.currency,
            "status": self.status,
            "stage_name": self.stage_name or "Unknown",
            "pipeline_name": self.pipeline_name or "Unknown",
            "owner_name": self.owner_name or "Unknown",
            "organization_name": self.org_name,
            "person_name": self.person_name,
            "add_time": self.add_time,
            "last_activity_date": self.last_activity_date,
            "close_time": self.close_time,
            "won_time": self.won_time,
            "lost_time": self.lost_time,
            "notes_count": self.notes_count or 0,
        }
        if booking_field_key:
            summary["booking_details"] = extra.get(booking_field_key)
        return summary


class Person(Record):
    name: Optional[str] = None
    email: Optional[Any] = None
    phone: Optional[Any] = None
    org_id: Optional[Any] = None
    owner_id: Optional[Any] = None


class Organization(Record):
    name: Optional[str] = None
    address: Optional[Any] = None
    owner_id: Optional[Any] = None
    people_count: Optional[int] = None
    open_deals_count: Optional[int] = None


class Pipeline(Record):
    name: Optional[str] = None
    active: Optional[bool] = None
    order_nr: Optional[int] = None
    url_title: Optional[str] = None


class Stage(Record):
    name: Optional[str] = None
    pipeline_id: Optional[int] = None
    pipeline_name: Optional[str] = None
    order_nr: Optional[int] = None
    deal_probability: Optional[int] = None


class Note(Record):
    content: Optional[str] = None
    deal_id: Optional[int] = None
    add_time: Optional[str] = None
    user_id: Optional[Any] = None


# === TOOL INPUTS ===


class ToolInput(BaseModel):
    """Base for tool arguments: strict types, camelCase names on the wire."""

    model_config = ConfigDict(strict=True, populate_by_name=True)


class EmptyInput(ToolInput):
    pass


class TermInput(ToolInput):
    term: str = Field(description="Search term")


class GetDealsInput(ToolInput):
    search_title: Optional[str] = Field(
        None, alias="searchTitle", description="Search deals by title/name (partial matches supported)"
    )
    days_back: int = Field(
        365,
        alias="daysBack",
        ge=0,
        description="Number of days back to fetch deals based on last activity date (default: 365)",
    )
    owner_id: Optional[int] = Field(
        None, alias="ownerId", description="Filter deals by owner/user ID (use get-users tool to find IDs)"
    )
    stage_id: Optional[int] = Field(None, alias="stageId", description="Filter deals by stage ID")
    status: Literal["open", "won", "lost", "deleted"] = Field(
        "open", description="Filter deals by status (default: open)"
    )
    pipeline_id: Optional[int] = Field(None, alias="pipelineId", description="Filter deals by pipeline ID")
    min_value: Optional[float] = Field(None, alias="minValue", description="Minimum deal value filter")
    max_value: Optional[float] = Field(None, alias="maxValue", description="Maximum deal value filter")
    limit: int = Field(500, ge=1, description="Maximum number of deals to return (default: 500)")


class DealIdInput(ToolInput):
    deal_id: int = Field(alias="dealId", description="Pipedrive deal ID")


class DealNotesInput(DealIdInput):
    limit: int = Field(20, ge=1, description="Maximum number of notes to return (default: 20)")


class PersonIdInput(ToolInput):
    person_id: int = Field(alias="personId", description="Pipedrive person ID")


class OrganizationIdInput(ToolInput):
    organization_id: int = Field(alias="organizationId", description="Pipedrive organization ID")


class PipelineIdInput(ToolInput):
    pipeline_id: int = Field(alias="pipelineId", description="Pipedrive pipeline ID")


class SearchAllInput(TermInput):
    item_types: Optional[str] = Field(
        None,
        alias="itemTypes",
        description=(
            "Comma-separated list of item types to search "
            "(deal,person,organization,product,file,activity,lead)"
        ),
    )


class CreateDealInput(ToolInput):
    title: str = Field(description="Deal title/name")
    value: Optional[float] = Field(None, description="Deal value in cents (e.g., 5000 for $50.00)")
    currency: str = Field("USD", description="Currency code (default: USD)")
    stage_id: int = Field(alias="stageId", description="Stage ID (use get-stages tool to find stage IDs)")
    owner_id: int = Field(alias="ownerId", description="Owner/User ID (use get-users tool to find user IDs)")
    person_id: Optional[int] = Field(None, alias="personId", description="Person ID (optional)")
    organization_id: Optional[int] = Field(
        None, alias="organizationId", description="Organization ID (optional)"
    )
    status: Literal["open", "won", "lost"] = Field("open", description="Deal status (default: open)")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "stage_id": self.stage_id,
            "user_id": self.owner_id,
            "status": self.status,
        }
        if self.value is not None:
            payload["value"] = self.value
            payload["currency"] = self.currency
        if self.person_id is not None:
            payload["person_id"] = self.person_id
        if self.organization_id is not None:
            payload["org_id"] = self.organization_id
        return payload


def _primary(value: str) -> List[Dict[str, Any]]:
    return [{"value": value, "primary": True}]


class CreatePersonInput(ToolInput):
    name: str = Field(description="Person's full name")
    email: Optional[EmailStr] = Field(None, description="Person's email address")
    phone: Optional[str] = Field(None, description="Person's phone number")
    organization_id: Optional[int] = Field(
        None, alias="organizationId", description="Organization ID (optional)"
    )
    owner_id: Optional[int] = Field(None, alias="ownerId", description="Owner/User ID (optional)")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        if self.email is not None:
            payload["email"] = _primary(str(self.email))
        if self.phone is not None:
            payload["phone"] = _primary(self.phone)
        if self.organization_id is not None:
            payload["org_id"] = self.organization_id
        if self.owner_id is not None:
            payload["owner_id"] = self.owner_id
        return payload


class CreateOrganizationInput(ToolInput):
    name: str = Field(description="Organization name")
    address: Optional[str] = Field(None, description="Organization address")
    city: Optional[str] = Field(None, description="City")
    state: Optional[str] = Field(None, description="State/Province")
    country: Optional[str] = Field(None, description="Country")
    zip: Optional[str] = Field(None, description="ZIP/Postal code")
    phone: Optional[str] = Field(None, description="Organization phone number")
    email: Optional[EmailStr] = Field(None, description="Organization email")
    owner_id: Optional[int] = Field(None, alias="ownerId", description="Owner/User ID (optional)")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        # v1 takes the address as one string and geocodes it
        parts = [self.address, self.city, self.state, self.zip, self.country]
        address = ", ".join(part for part in parts if part)
        if address:
            payload["address"] = address
        if self.phone is not None:
            payload["phone"] = _primary(self.phone)
        if self.email is not None:
            payload["email"] = _primary(str(self.email))
        if self.owner_id is not None:
            payload["owner_id"] = self.owner_id
        return payload
