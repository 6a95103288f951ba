"""Structured extraction payloads produced upstream by the document AI.

Each document carries at most one extraction whose ``documentType`` selects
one of six payload schemas.  They are modelled as a Pydantic discriminated
union so harvesting and summarization can dispatch on a closed set of
variants instead of probing untyped dictionaries.

Upstream JSON uses camelCase keys; every model accepts those through an
alias generator while exposing snake_case attributes.  Almost every field
is optional because extractions are frequently partial, and validation is
per field: a malformed list item is blanked in place and a malformed
scalar or nested object reverts to its default, so one bad value never
costs the rest of the payload.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union, get_args, get_origin

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from pydantic.alias_generators import to_camel

from src.utils.logging import get_logger

logger = get_logger(__name__)


class _Payload(BaseModel):
    """Shared config: camelCase aliases, frozen, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def drop_invalid_parts(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        """Blank out what fails validation instead of rejecting the whole payload.

        An invalid list item becomes an empty placeholder so later items keep
        their upstream index (field paths and confidences are keyed by it); a
        non-list becomes an empty list.  Any other field falls back to its
        default.
        """
        field = cls.model_fields[info.field_name]
        if get_origin(field.annotation) is list:
            if not isinstance(value, list):
                return []
            (item_type,) = get_args(field.annotation)
            is_model = isinstance(item_type, type) and issubclass(item_type, BaseModel)
            kept: list[Any] = []
            for item in value:
                try:
                    kept.extend(handler([item]))
                except ValidationError:
                    kept.append(item_type() if is_model else "")
            return kept
        try:
            return handler(value)
        except ValidationError:
            return field.get_default(call_default_factory=True)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class Party(_Payload):
    name: str | None = None
    role: str | None = None
    address: str | None = None


class Signature(_Payload):
    party: str | None = None
    signed_date: str | None = None


class PaymentTerms(_Payload):
    amount: float | None = None
    currency: str | None = None
    frequency: str | None = None
    due_date: str | None = None
    net_days: int | None = None


class LiabilityLimit(_Payload):
    amount: float | None = None
    currency: str | None = None


class ContractExtraction(_Payload):
    document_type: Literal["contract"] = "contract"
    title: str | None = None
    parties: list[Party] = Field(default_factory=list)
    effective_date: str | None = None
    expiration_date: str | None = None
    term_length: str | None = None
    auto_renewal: bool | None = None
    payment_terms: PaymentTerms | None = None
    liability_limit: LiabilityLimit | None = None
    governing_law: str | None = None
    key_obligations: list[str] = Field(default_factory=list)
    signatures: list[Signature] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Invoice
# ---------------------------------------------------------------------------

class InvoiceParty(_Payload):
    name: str | None = None
    address: str | None = None
    tax_id: str | None = None


class LineItem(_Payload):
    description: str | None = None
    quantity: float | None = None
    unit_price: float | None = None
    amount: float | None = None


class InvoiceExtraction(_Payload):
    document_type: Literal["invoice"] = "invoice"
    invoice_number: str | None = None
    vendor: InvoiceParty | None = None
    customer: InvoiceParty | None = None
    issue_date: str | None = None
    due_date: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: float | None = None
    tax: float | None = None
    total: float | None = None
    currency: str | None = None


# ---------------------------------------------------------------------------
# Proposal
# ---------------------------------------------------------------------------

class Deliverable(_Payload):
    name: str | None = None
    description: str | None = None


class PricingItem(_Payload):
    item: str | None = None
    amount: float | None = None


class Pricing(_Payload):
    total: float | None = None
    currency: str | None = None
    breakdown: list[PricingItem] = Field(default_factory=list)


class Milestone(_Payload):
    name: str | None = None
    date: str | None = None


class Timeline(_Payload):
    start_date: str | None = None
    end_date: str | None = None
    milestones: list[Milestone] = Field(default_factory=list)


class ProposalExtraction(_Payload):
    document_type: Literal["proposal"] = "proposal"
    title: str | None = None
    vendor: str | None = None
    client: str | None = None
    date: str | None = None
    valid_until: str | None = None
    scope: list[str] = Field(default_factory=list)
    deliverables: list[Deliverable] = Field(default_factory=list)
    pricing: Pricing | None = None
    timeline: Timeline | None = None


# ---------------------------------------------------------------------------
# Meeting notes
# ---------------------------------------------------------------------------

class Discussion(_Payload):
    topic: str | None = None
    summary: str | None = None


class ActionItem(_Payload):
    task: str | None = None
    assignee: str | None = None
    due_date: str | None = None
    status: str | None = None


class NextMeeting(_Payload):
    date: str | None = None


class MeetingNotesExtraction(_Payload):
    document_type: Literal["meeting_notes"] = "meeting_notes"
    title: str | None = None
    date: str | None = None
    attendees: list[str] = Field(default_factory=list)
    absentees: list[str] = Field(default_factory=list)
    discussions: list[Discussion] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    next_meeting: NextMeeting | None = None


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

class ReportPeriod(_Payload):
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None


class Metric(_Payload):
    name: str | None = None
    value: float | str | None = None
    change: str | None = None
    trend: str | None = None


class Risk(_Payload):
    description: str | None = None
    severity: str | None = None


class ReportExtraction(_Payload):
    document_type: Literal["report"] = "report"
    title: str | None = None
    author: str | None = None
    date: str | None = None
    period: ReportPeriod | None = None
    key_findings: list[str] = Field(default_factory=list)
    metrics: list[Metric] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Generic ("other")
# ---------------------------------------------------------------------------

class GenericEntity(_Payload):
    type: str | None = None
    value: str | None = None
    context: str | None = None


class GenericDate(_Payload):
    date: str | None = None
    context: str | None = None


class GenericAmount(_Payload):
    value: float | None = None
    currency: str | None = None
    context: str | None = None


class GenericExtraction(_Payload):
    document_type: Literal["other"] = "other"
    title: str | None = None
    date: str | None = None
    author: str | None = None
    summary: str | None = None
    key_points: list[str] = Field(default_factory=list)
    entities: list[GenericEntity] = Field(default_factory=list)
    dates: list[GenericDate] = Field(default_factory=list)
    amounts: list[GenericAmount] = Field(default_factory=list)


ExtractionPayload = Annotated[
    Union[
        ContractExtraction,
        InvoiceExtraction,
        ProposalExtraction,
        MeetingNotesExtraction,
        ReportExtraction,
        GenericExtraction,
    ],
    Field(discriminator="document_type"),
]

_payload_adapter: TypeAdapter[ExtractionPayload] = TypeAdapter(ExtractionPayload)

KNOWN_DOCUMENT_TYPES: frozenset[str] = frozenset(
    {"contract", "invoice", "proposal", "meeting_notes", "report", "other"}
)


def parse_payload(document_type: str, data: Any) -> ExtractionPayload | None:
    """Validate raw extraction JSON into its typed payload.

    Returns ``None`` for unknown document types and for data that is not a
    JSON object at all.  Bad values inside an object are blanked field by
    field, so anything else yields a (possibly sparse) payload.
    """
    if document_type not in KNOWN_DOCUMENT_TYPES:
        return None
    if not isinstance(data, dict):
        logger.warning("extraction_payload_not_object", document_type=document_type)
        return None
    try:
        return _payload_adapter.validate_python({**data, "documentType": document_type})
    except ValidationError as exc:
        logger.warning(
            "extraction_payload_invalid",
            document_type=document_type,
            error_count=exc.error_count(),
        )
        return None


class Extraction(BaseModel):
    """A document's stored extraction: typed payload plus per-field confidence."""

    model_config = ConfigDict(frozen=True)

    doc_id: str
    document_type: str
    payload: ExtractionPayload | None = None
    field_confidences: dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_stored(
        cls,
        doc_id: str,
        document_type: str,
        data: Any,
        field_confidences: dict[str, float] | None = None,
    ) -> Extraction:
        return cls(
            doc_id=doc_id,
            document_type=document_type,
            payload=parse_payload(document_type, data),
            field_confidences=field_confidences or {},
        )
