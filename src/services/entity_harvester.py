"""Deterministic entity harvesting from structured extraction data.

Every document in a workspace may carry one AI extraction (contract,
invoice, proposal, meeting notes, report or generic).  The harvester reads
the typed payload field by field, turns each meaningful value into a
:class:`~src.models.entities.RawEntity`, and merges those into the
workspace's canonical entities and mentions.

Architecture overview
---------------------
1. DISPATCH  -- ``HARVESTERS`` maps the document type to a pure
                ``harvest_<type>(payload)`` function.  Adding a document
                type means adding one function and one table entry.
2. CANONICALIZE -- each raw entity's name is normalized (NFC, trimmed,
                lowercased) and looked up by (workspace, type, normalized
                name).  A miss creates the entity and pushes it into the
                text index.
3. MENTION   -- one mention per (entity, document, field path).  The
                mention store ignores duplicates, so re-harvesting the same
                extraction changes nothing.
4. COUNT     -- ``mention_count`` grows with every new mention;
                ``doc_count`` only the first time an entity shows up in a
                document.

No AI is involved anywhere in this module.  Failures are collected per
raw entity into ``HarvestResult.errors``; a harvest never raises.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from src.interfaces.document_source import IDocumentSource
from src.interfaces.entity_store import IEntityStore
from src.interfaces.mention_store import IMentionStore
from src.interfaces.text_index_provider import ITextIndexProvider
from src.models.entities import EntityType, HarvestResult, MentionSource, RawEntity
from src.models.extraction import (
    ContractExtraction,
    Extraction,
    GenericExtraction,
    InvoiceExtraction,
    MeetingNotesExtraction,
    ProposalExtraction,
    ReportExtraction,
)
from src.utils.errors import EntityLimitExceededError
from src.utils.logging import get_logger
from src.utils.text_normalizer import format_amount, looks_like_organization, normalize_name

logger: structlog.BoundLogger = get_logger(__name__)

DEFAULT_CONFIDENCE = 0.75

_GENERIC_TYPE_MAP: dict[str, EntityType] = {
    "person": EntityType.PERSON,
    "organization": EntityType.ORGANIZATION,
    "date": EntityType.DATE,
    "amount": EntityType.AMOUNT,
    "location": EntityType.LOCATION,
    "product": EntityType.PRODUCT,
    "concept": EntityType.CONCEPT,
    "term": EntityType.TERM,
    "other": EntityType.TERM,
}


def _meta(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _person_or_org(name: str) -> EntityType:
    return EntityType.ORGANIZATION if looks_like_organization(name) else EntityType.PERSON


# ------------------------------------------------------------------
# Per-document-type harvesters
# ------------------------------------------------------------------

def harvest_contract(payload: ContractExtraction) -> list[RawEntity]:
    entities: list[RawEntity] = []

    for i, party in enumerate(payload.parties):
        if not party.name:
            continue
        entities.append(RawEntity(
            name=party.name,
            entity_type=_person_or_org(party.name),
            field_path=f"parties[{i}].name",
            context=f"Party ({party.role or 'other'}) in contract",
            metadata=_meta(role=party.role),
        ))
        if party.address:
            entities.append(RawEntity(
                name=party.address,
                entity_type=EntityType.LOCATION,
                field_path=f"parties[{i}].address",
                context=f"Address of {party.name}",
            ))

    if payload.effective_date:
        entities.append(RawEntity(
            name=payload.effective_date,
            entity_type=EntityType.DATE,
            field_path="effectiveDate",
            context="Effective date of contract",
            metadata={"context": "effective date"},
        ))
    if payload.expiration_date:
        entities.append(RawEntity(
            name=payload.expiration_date,
            entity_type=EntityType.DATE,
            field_path="expirationDate",
            context="Expiration date of contract",
            metadata={"context": "expiration date"},
        ))

    terms = payload.payment_terms
    if terms is not None:
        if terms.amount is not None:
            entities.append(RawEntity(
                name=format_amount(terms.amount, terms.currency),
                entity_type=EntityType.AMOUNT,
                field_path="paymentTerms.amount",
                context="Payment amount in contract",
                metadata=_meta(
                    value=terms.amount,
                    currency=terms.currency or "USD",
                    frequency=terms.frequency,
                    context="payment",
                ),
            ))
        if terms.due_date:
            entities.append(RawEntity(
                name=terms.due_date,
                entity_type=EntityType.DATE,
                field_path="paymentTerms.dueDate",
                context="Payment due date",
                metadata={"context": "due date"},
            ))

    limit = payload.liability_limit
    if limit is not None and limit.amount is not None:
        entities.append(RawEntity(
            name=format_amount(limit.amount, limit.currency),
            entity_type=EntityType.AMOUNT,
            field_path="liabilityLimit.amount",
            context="Liability limit in contract",
            metadata={
                "value": limit.amount,
                "currency": limit.currency or "USD",
                "context": "liability cap",
            },
        ))

    if payload.governing_law:
        entities.append(RawEntity(
            name=payload.governing_law,
            entity_type=EntityType.LOCATION,
            field_path="governingLaw",
            context="Governing law jurisdiction",
            metadata={"context": "governing law"},
        ))

    for i, sig in enumerate(payload.signatures):
        if sig.party:
            entities.append(RawEntity(
                name=sig.party,
                entity_type=EntityType.PERSON,
                field_path=f"signatures[{i}].party",
                context="Signatory of contract",
            ))
        if sig.signed_date:
            entities.append(RawEntity(
                name=sig.signed_date,
                entity_type=EntityType.DATE,
                field_path=f"signatures[{i}].signedDate",
                context=f"Signed date by {sig.party or 'unknown'}",
                metadata={"context": "signed date"},
            ))

    for i, obligation in enumerate(payload.key_obligations):
        if obligation:
            entities.append(RawEntity(
                name=obligation,
                entity_type=EntityType.TERM,
                field_path=f"keyObligations[{i}]",
                context="Key obligation in contract",
            ))

    return entities


def harvest_invoice(payload: InvoiceExtraction) -> list[RawEntity]:
    entities: list[RawEntity] = []

    for role, party in (("vendor", payload.vendor), ("customer", payload.customer)):
        if party is None or not party.name:
            continue
        entities.append(RawEntity(
            name=party.name,
            entity_type=EntityType.ORGANIZATION,
            field_path=f"{role}.name",
            context=f"Invoice {role}",
        ))
        if party.address:
            entities.append(RawEntity(
                name=party.address,
                entity_type=EntityType.LOCATION,
                field_path=f"{role}.address",
                context=f"Address of {party.name}",
            ))

    if payload.issue_date:
        entities.append(RawEntity(
            name=payload.issue_date,
            entity_type=EntityType.DATE,
            field_path="issueDate",
            context="Invoice issue date",
            metadata={"context": "issue date"},
        ))
    if payload.due_date:
        entities.append(RawEntity(
            name=payload.due_date,
            entity_type=EntityType.DATE,
            field_path="dueDate",
            context="Invoice due date",
            metadata={"context": "due date"},
        ))

    for i, item in enumerate(payload.line_items):
        if item.description:
            entities.append(RawEntity(
                name=item.description,
                entity_type=EntityType.PRODUCT,
                field_path=f"lineItems[{i}].description",
                context="Invoice line item",
            ))

    currency = payload.currency or "USD"
    amounts = [
        ("total", payload.total, "Invoice total", "invoice total"),
        # subtotal is redundant when it equals the total; zero tax is noise
        ("subtotal", payload.subtotal if payload.subtotal != payload.total else None,
         "Invoice subtotal", "subtotal"),
        ("tax", payload.tax if payload.tax is not None and payload.tax > 0 else None,
         "Invoice tax", "tax"),
    ]
    for path, value, context, meta_context in amounts:
        if value is None:
            continue
        entities.append(RawEntity(
            name=format_amount(value, currency),
            entity_type=EntityType.AMOUNT,
            field_path=path,
            context=context,
            metadata={"value": value, "currency": currency, "context": meta_context},
        ))

    return entities


def harvest_proposal(payload: ProposalExtraction) -> list[RawEntity]:
    entities: list[RawEntity] = []

    if payload.vendor:
        entities.append(RawEntity(
            name=payload.vendor,
            entity_type=EntityType.ORGANIZATION,
            field_path="vendor",
            context="Proposal vendor",
        ))
    if payload.client:
        entities.append(RawEntity(
            name=payload.client,
            entity_type=EntityType.ORGANIZATION,
            field_path="client",
            context="Proposal client",
        ))
    if payload.date:
        entities.append(RawEntity(
            name=payload.date,
            entity_type=EntityType.DATE,
            field_path="date",
            context="Proposal date",
            metadata={"context": "proposal date"},
        ))
    if payload.valid_until:
        entities.append(RawEntity(
            name=payload.valid_until,
            entity_type=EntityType.DATE,
            field_path="validUntil",
            context="Proposal valid until",
            metadata={"context": "valid until"},
        ))

    for i, deliverable in enumerate(payload.deliverables):
        if deliverable.name:
            entities.append(RawEntity(
                name=deliverable.name,
                entity_type=EntityType.PRODUCT,
                field_path=f"deliverables[{i}].name",
                context="Proposal deliverable",
            ))

    pricing = payload.pricing
    if pricing is not None:
        currency = pricing.currency or "USD"
        if pricing.total is not None:
            entities.append(RawEntity(
                name=format_amount(pricing.total, pricing.currency),
                entity_type=EntityType.AMOUNT,
                field_path="pricing.total",
                context="Proposal total price",
                metadata={"value": pricing.total, "currency": currency, "context": "proposal total"},
            ))
        for i, item in enumerate(pricing.breakdown):
            if item.amount is None:
                continue
            entities.append(RawEntity(
                name=format_amount(item.amount, pricing.currency),
                entity_type=EntityType.AMOUNT,
                field_path=f"pricing.breakdown[{i}].amount",
                context=f"Pricing for {item.item or 'item'}",
                metadata={"value": item.amount, "currency": currency, "context": "pricing breakdown"},
            ))

    timeline = payload.timeline
    if timeline is not None:
        if timeline.start_date:
            entities.append(RawEntity(
                name=timeline.start_date,
                entity_type=EntityType.DATE,
                field_path="timeline.startDate",
                context="Proposal start date",
                metadata={"context": "start date"},
            ))
        if timeline.end_date:
            entities.append(RawEntity(
                name=timeline.end_date,
                entity_type=EntityType.DATE,
                field_path="timeline.endDate",
                context="Proposal end date",
                metadata={"context": "end date"},
            ))
        for i, milestone in enumerate(timeline.milestones):
            if milestone.name:
                entities.append(RawEntity(
                    name=milestone.name,
                    entity_type=EntityType.TERM,
                    field_path=f"timeline.milestones[{i}].name",
                    context="Proposal milestone",
                ))
            if milestone.date:
                entities.append(RawEntity(
                    name=milestone.date,
                    entity_type=EntityType.DATE,
                    field_path=f"timeline.milestones[{i}].date",
                    context=f"Milestone date: {milestone.name or ''}",
                    metadata={"context": "milestone date"},
                ))

    for i, item in enumerate(payload.scope):
        if item:
            entities.append(RawEntity(
                name=item,
                entity_type=EntityType.TERM,
                field_path=f"scope[{i}]",
                context="Proposal scope item",
            ))

    return entities


def harvest_meeting_notes(payload: MeetingNotesExtraction) -> list[RawEntity]:
    entities: list[RawEntity] = []

    if payload.date:
        entities.append(RawEntity(
            name=payload.date,
            entity_type=EntityType.DATE,
            field_path="date",
            context="Meeting date",
            metadata={"context": "meeting date"},
        ))

    for key, people, context in (
        ("attendees", payload.attendees, "Meeting attendee"),
        ("absentees", payload.absentees, "Meeting absentee"),
    ):
        for i, name in enumerate(people):
            if name:
                entities.append(RawEntity(
                    name=name,
                    entity_type=EntityType.PERSON,
                    field_path=f"{key}[{i}]",
                    context=context,
                ))

    for i, item in enumerate(payload.action_items):
        task = item.task or "action item"
        if item.assignee:
            entities.append(RawEntity(
                name=item.assignee,
                entity_type=EntityType.PERSON,
                field_path=f"actionItems[{i}].assignee",
                context=f"Assigned to: {task}",
            ))
        if item.due_date:
            entities.append(RawEntity(
                name=item.due_date,
                entity_type=EntityType.DATE,
                field_path=f"actionItems[{i}].dueDate",
                context=f"Due date for: {task}",
                metadata={"context": "action item due date"},
            ))
        if item.task:
            entities.append(RawEntity(
                name=item.task,
                entity_type=EntityType.TERM,
                field_path=f"actionItems[{i}].task",
                context="Meeting action item",
            ))

    for i, discussion in enumerate(payload.discussions):
        if discussion.topic:
            entities.append(RawEntity(
                name=discussion.topic,
                entity_type=EntityType.CONCEPT,
                field_path=f"discussions[{i}].topic",
                context="Meeting discussion topic",
            ))

    if payload.next_meeting is not None and payload.next_meeting.date:
        entities.append(RawEntity(
            name=payload.next_meeting.date,
            entity_type=EntityType.DATE,
            field_path="nextMeeting.date",
            context="Next meeting date",
            metadata={"context": "next meeting"},
        ))

    return entities


def harvest_report(payload: ReportExtraction) -> list[RawEntity]:
    entities: list[RawEntity] = []

    if payload.author:
        entities.append(RawEntity(
            name=payload.author,
            entity_type=_person_or_org(payload.author),
            field_path="author",
            context="Report author",
        ))
    if payload.date:
        entities.append(RawEntity(
            name=payload.date,
            entity_type=EntityType.DATE,
            field_path="date",
            context="Report date",
            metadata={"context": "report date"},
        ))

    period = payload.period
    if period is not None:
        if period.from_:
            entities.append(RawEntity(
                name=period.from_,
                entity_type=EntityType.DATE,
                field_path="period.from",
                context="Report period start",
                metadata={"context": "period start"},
            ))
        if period.to:
            entities.append(RawEntity(
                name=period.to,
                entity_type=EntityType.DATE,
                field_path="period.to",
                context="Report period end",
                metadata={"context": "period end"},
            ))

    for i, metric in enumerate(payload.metrics):
        if metric.name:
            entities.append(RawEntity(
                name=metric.name,
                entity_type=EntityType.TERM,
                field_path=f"metrics[{i}].name",
                context="Report metric",
            ))
        # Textual values ("strong", "n/a") are not amounts
        if isinstance(metric.value, (int, float)):
            entities.append(RawEntity(
                name=format_amount(metric.value),
                entity_type=EntityType.AMOUNT,
                field_path=f"metrics[{i}].value",
                context=f"Metric value: {metric.name or ''}",
                metadata=_meta(
                    value=metric.value,
                    context="metric",
                    change=metric.change,
                    trend=metric.trend,
                ),
            ))

    for i, risk in enumerate(payload.risks):
        if risk.description:
            entities.append(RawEntity(
                name=risk.description,
                entity_type=EntityType.CONCEPT,
                field_path=f"risks[{i}].description",
                context="Report risk",
            ))

    for key, items, context in (
        ("keyFindings", payload.key_findings, "Report key finding"),
        ("recommendations", payload.recommendations, "Report recommendation"),
    ):
        for i, text in enumerate(items):
            if text:
                entities.append(RawEntity(
                    name=text,
                    entity_type=EntityType.CONCEPT,
                    field_path=f"{key}[{i}]",
                    context=context,
                ))

    return entities


def harvest_generic(payload: GenericExtraction) -> list[RawEntity]:
    entities: list[RawEntity] = []

    if payload.author:
        entities.append(RawEntity(
            name=payload.author,
            entity_type=_person_or_org(payload.author),
            field_path="author",
            context="Document author",
        ))
    if payload.date:
        entities.append(RawEntity(
            name=payload.date,
            entity_type=EntityType.DATE,
            field_path="date",
            context="Document date",
            metadata={"context": "document date"},
        ))

    for i, entity in enumerate(payload.entities):
        if not entity.value or not entity.type:
            continue
        entities.append(RawEntity(
            name=entity.value,
            entity_type=_GENERIC_TYPE_MAP.get(entity.type, EntityType.TERM),
            field_path=f"entities[{i}]",
            context=entity.context or f"Generic entity ({entity.type})",
        ))

    for i, item in enumerate(payload.dates):
        if item.date:
            entities.append(RawEntity(
                name=item.date,
                entity_type=EntityType.DATE,
                field_path=f"dates[{i}].date",
                context=item.context or "Date in document",
                metadata=_meta(context=item.context),
            ))

    for i, amount in enumerate(payload.amounts):
        if amount.value is None:
            continue
        entities.append(RawEntity(
            name=format_amount(amount.value, amount.currency),
            entity_type=EntityType.AMOUNT,
            field_path=f"amounts[{i}]",
            context=amount.context or "Amount in document",
            metadata={
                "value": amount.value,
                "currency": amount.currency or "USD",
                "context": amount.context or "amount",
            },
        ))

    return entities


HARVESTERS: dict[str, Callable[[Any], list[RawEntity]]] = {
    "contract": harvest_contract,
    "invoice": harvest_invoice,
    "proposal": harvest_proposal,
    "meeting_notes": harvest_meeting_notes,
    "report": harvest_report,
    "other": harvest_generic,
}


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------

class EntityHarvester:
    """Merges raw entities from extractions into canonical entities and mentions.

    Parameters
    ----------
    entity_store:
        Canonical entity persistence.
    mention_store:
        Mention persistence (duplicate inserts return ``None``).
    text_index:
        Index that receives every newly created entity.
    document_source:
        Read-only access to documents and their extractions.
    """

    def __init__(
        self,
        entity_store: IEntityStore,
        mention_store: IMentionStore,
        text_index: ITextIndexProvider,
        document_source: IDocumentSource,
    ) -> None:
        self._entities = entity_store
        self._mentions = mention_store
        self._index = text_index
        self._documents = document_source

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def harvest_from_extraction(
        self, extraction: Extraction, workspace_id: str
    ) -> HarvestResult:
        """Harvest one extraction into *workspace_id*.

        Unknown document types yield an empty result.  A known type whose
        payload could not be read at all yields an empty result carrying an
        error.  Never raises.
        """
        harvester = HARVESTERS.get(extraction.document_type)
        if harvester is None:
            logger.warning(
                "harvest_skipped_unknown_type",
                doc_id=extraction.doc_id,
                document_type=extraction.document_type,
            )
            return HarvestResult(doc_id=extraction.doc_id, workspace_id=workspace_id)
        if extraction.payload is None:
            logger.warning(
                "harvest_skipped_unreadable_payload",
                doc_id=extraction.doc_id,
                document_type=extraction.document_type,
            )
            return HarvestResult(
                doc_id=extraction.doc_id,
                workspace_id=workspace_id,
                errors=[
                    f"Extraction for document {extraction.doc_id} is not a valid "
                    f"{extraction.document_type} payload"
                ],
            )

        try:
            raw_entities = harvester(extraction.payload)
            result = await self._process(
                raw_entities, workspace_id, extraction.doc_id, extraction.field_confidences
            )
        except Exception as exc:
            logger.error("harvest_failed", doc_id=extraction.doc_id, error=str(exc))
            return HarvestResult(
                doc_id=extraction.doc_id,
                workspace_id=workspace_id,
                errors=[f"Harvest failed: {exc}"],
            )

        logger.info(
            "harvest_completed",
            doc_id=extraction.doc_id,
            workspace_id=workspace_id,
            raw_entities=len(raw_entities),
            entities_created=result.entities_created,
            entities_reused=result.entities_reused,
            mentions_created=result.mentions_created,
            mentions_skipped=result.mentions_skipped,
            error_count=len(result.errors),
        )
        return result

    async def harvest_from_doc(self, doc_id: str, workspace_id: str) -> HarvestResult:
        """Load the document's extraction and harvest it; zero counts if it has none."""
        try:
            extraction = await self._documents.get_extraction(doc_id)
        except Exception as exc:
            logger.error("harvest_extraction_load_failed", doc_id=doc_id, error=str(exc))
            return HarvestResult(
                doc_id=doc_id,
                workspace_id=workspace_id,
                errors=[f"Harvest from doc failed: {exc}"],
            )
        if extraction is None:
            return HarvestResult(doc_id=doc_id, workspace_id=workspace_id)
        return await self.harvest_from_extraction(extraction, workspace_id)

    async def harvest_workspace(self, workspace_id: str) -> HarvestResult:
        """Harvest every document in the workspace and aggregate the counters.

        The aggregate's ``doc_id`` is empty.
        """
        try:
            docs = await self._documents.list_documents(workspace_id)
        except Exception as exc:
            logger.error("harvest_workspace_failed", workspace_id=workspace_id, error=str(exc))
            return HarvestResult(
                doc_id="",
                workspace_id=workspace_id,
                errors=[f"Workspace harvest failed: {exc}"],
            )

        return await self.harvest_documents(workspace_id, [doc.id for doc in docs])

    async def harvest_documents(self, workspace_id: str, doc_ids: list[str]) -> HarvestResult:
        """Harvest the given documents one after another and aggregate the counters."""
        created = reused = mentions = skipped = 0
        errors: list[str] = []
        for doc_id in doc_ids:
            result = await self.harvest_from_doc(doc_id, workspace_id)
            created += result.entities_created
            reused += result.entities_reused
            mentions += result.mentions_created
            skipped += result.mentions_skipped
            errors.extend(result.errors)

        return HarvestResult(
            doc_id="",
            workspace_id=workspace_id,
            entities_created=created,
            entities_reused=reused,
            mentions_created=mentions,
            mentions_skipped=skipped,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Canonicalization
    # ------------------------------------------------------------------

    async def _process(
        self,
        raw_entities: list[RawEntity],
        workspace_id: str,
        doc_id: str,
        field_confidences: dict[str, float],
    ) -> HarvestResult:
        created = reused = mentions_created = mentions_skipped = 0
        errors: list[str] = []

        existing = await self._mentions.get_by_doc(doc_id)
        entity_ids_in_doc = {m.entity_id for m in existing}
        batch_entity_ids: set[str] = set()
        limit_reached = False

        for raw in raw_entities:
            try:
                name = raw.name.strip()
                normalized = normalize_name(name)
                if not normalized:
                    continue

                confidence = field_confidences.get(raw.field_path, DEFAULT_CONFIDENCE)

                entity = await self._entities.get_by_normalized_name(
                    workspace_id, normalized, raw.entity_type
                )
                if entity is not None:
                    reused += 1
                elif limit_reached:
                    errors.append(
                        f"Entity limit reached for workspace {workspace_id}. "
                        f'Skipping new entity "{name}".'
                    )
                    continue
                else:
                    try:
                        entity, inserted = await self._entities.create(
                            workspace_id=workspace_id,
                            entity_type=raw.entity_type,
                            name=name,
                            normalized_name=normalized,
                            metadata=raw.metadata,
                        )
                    except EntityLimitExceededError as exc:
                        limit_reached = True
                        logger.warning(
                            "entity_limit_reached",
                            workspace_id=workspace_id,
                            current_count=exc.current_count,
                            limit=exc.limit,
                        )
                        errors.append(
                            f"Entity limit reached for workspace {workspace_id}. "
                            f'Skipping new entity "{name}".'
                        )
                        continue

                    if inserted:
                        created += 1
                        try:
                            await self._index.sync_entity(
                                entity.id, workspace_id, entity.name, entity.aliases
                            )
                        except Exception as exc:
                            errors.append(f'Index sync failed for entity "{name}": {exc}')
                    else:
                        reused += 1

                mention = await self._mentions.create(
                    workspace_id=workspace_id,
                    entity_id=entity.id,
                    doc_id=doc_id,
                    field_path=raw.field_path,
                    context=raw.context,
                    confidence=confidence,
                    source=MentionSource.EXTRACTION,
                )
                if mention is None:
                    mentions_skipped += 1
                    continue

                mentions_created += 1
                new_doc = entity.id not in entity_ids_in_doc and entity.id not in batch_entity_ids
                await self._entities.increment_counts(entity.id, 1, 1 if new_doc else 0)
                batch_entity_ids.add(entity.id)
            except Exception as exc:
                errors.append(
                    f'Failed to process entity "{raw.name}" ({raw.entity_type.value}): {exc}'
                )

        return HarvestResult(
            doc_id=doc_id,
            workspace_id=workspace_id,
            entities_created=created,
            entities_reused=reused,
            mentions_created=mentions_created,
            mentions_skipped=mentions_skipped,
            errors=errors,
        )
