"""Compact one-line summaries of structured extractions for AI prompts.

Both the semantic search synthesis prompt and the related-documents
re-rank prompt describe each document through the same projection: its
type, a handful of headline fields chosen per document type, and the
free-text summary when the extraction has one.  Output is capped at 500
characters so a prompt with ten candidates stays small.
"""

from __future__ import annotations

from src.models.extraction import (
    ContractExtraction,
    Extraction,
    GenericExtraction,
    InvoiceExtraction,
    MeetingNotesExtraction,
    ProposalExtraction,
    ReportExtraction,
)

MAX_SUMMARY_LENGTH = 500


def format_number(value: float | int) -> str:
    """Render a number the way upstream JSON shows it (``150000``, ``99.5``)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _contract_parts(payload: ContractExtraction) -> list[str]:
    parts = []
    names = [p.name for p in payload.parties if p.name]
    if names:
        parts.append(f"Parties: {', '.join(names)}")
    if payload.effective_date:
        parts.append(f"Effective: {payload.effective_date}")
    if payload.expiration_date:
        parts.append(f"Expires: {payload.expiration_date}")
    if payload.governing_law:
        parts.append(f"Governing Law: {payload.governing_law}")
    terms = payload.payment_terms
    if terms is not None and terms.amount is not None:
        parts.append(f"Payment: {terms.currency or '$'}{format_number(terms.amount)}")
    return parts


def _invoice_parts(payload: InvoiceExtraction) -> list[str]:
    parts = []
    if payload.vendor and payload.vendor.name:
        parts.append(f"Vendor: {payload.vendor.name}")
    if payload.customer and payload.customer.name:
        parts.append(f"Customer: {payload.customer.name}")
    if payload.total is not None:
        parts.append(f"Total: {format_number(payload.total)}")
    if payload.issue_date:
        parts.append(f"Issued: {payload.issue_date}")
    if payload.due_date:
        parts.append(f"Due: {payload.due_date}")
    return parts


def _proposal_parts(payload: ProposalExtraction) -> list[str]:
    parts = []
    if payload.vendor:
        parts.append(f"Vendor: {payload.vendor}")
    if payload.client:
        parts.append(f"Client: {payload.client}")
    if payload.pricing is not None and payload.pricing.total is not None:
        parts.append(f"Total: {format_number(payload.pricing.total)}")
    return parts


def _meeting_parts(payload: MeetingNotesExtraction) -> list[str]:
    parts = []
    if payload.date:
        parts.append(f"Date: {payload.date}")
    attendees = [name for name in payload.attendees if name]
    if attendees:
        parts.append(f"Attendees: {', '.join(attendees)}")
    return parts


def _report_parts(payload: ReportExtraction) -> list[str]:
    parts = []
    if payload.author:
        parts.append(f"Author: {payload.author}")
    if payload.date:
        parts.append(f"Date: {payload.date}")
    return parts


def summarize_extraction(extraction: Extraction) -> str:
    """Project an extraction onto a ``"; "``-joined summary line.

    Args:
        extraction: The stored extraction.  A payload that failed
            validation still yields the ``Type:`` part.

    Returns:
        A string of at most 500 characters plus a trailing ``...`` when cut.
    """
    parts = [f"Type: {extraction.document_type}"]
    payload = extraction.payload

    if isinstance(payload, ContractExtraction):
        parts.extend(_contract_parts(payload))
    elif isinstance(payload, InvoiceExtraction):
        parts.extend(_invoice_parts(payload))
    elif isinstance(payload, ProposalExtraction):
        parts.extend(_proposal_parts(payload))
    elif isinstance(payload, MeetingNotesExtraction):
        parts.extend(_meeting_parts(payload))
    elif isinstance(payload, ReportExtraction):
        parts.extend(_report_parts(payload))

    if isinstance(payload, GenericExtraction) and payload.summary:
        parts.append(f"Summary: {payload.summary}")

    full = "; ".join(parts)
    if len(full) > MAX_SUMMARY_LENGTH:
        return full[:MAX_SUMMARY_LENGTH] + "..."
    return full
