"""
Ticket Enrichment

Turns a raw incremental-export ticket into one denormalized report row:
requester email plus all public comments labelled by author role.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from zendesk_export.errors import EnrichmentError, ExportError

PLACEHOLDER = "N/A"
COMMENT_SEPARATOR = "\n\n---\n\n"
REPORT_HEADER = ["Ticket ID", "Created At", "Requester Email", "Channel", "Subject", "All Public Comments"]


@dataclass(frozen=True)
class EnrichedRow:
    record_id: int
    created_at: str
    requester_email: str
    channel: str
    subject: str
    body_digest: str

    def as_report_row(self) -> list:
        return [self.record_id, self.created_at, self.requester_email, self.channel, self.subject, self.body_digest]


@dataclass
class EnrichmentResult:
    row: EnrichedRow
    errors: List[EnrichmentError] = field(default_factory=list)


def comment_role(comment: dict, requester_id) -> str:
    """
    Label a comment by its author.

    Any author other than the requester (agents, but also triggers and other
    system authors) is labelled "Agent".
    """
    if requester_id is not None and comment.get("author_id") == requester_id:
        return "Requester"
    return "Agent"


def format_comments(comments: List[dict], requester_id) -> str:
    """
    Join the public comments of a ticket into one text block.

    Args:
        comments: Comments in the order returned by the API
        requester_id: Requester user id of the ticket

    Returns:
        "**Role:** body" entries joined by COMMENT_SEPARATOR; private comments
        are left out
    """
    formatted = []
    for comment in comments:
        if comment.get("public") is not True:
            continue
        role = comment_role(comment, requester_id)
        formatted.append(f"**{role}:** {comment.get('body') or ''}")
    return COMMENT_SEPARATOR.join(formatted)


class TicketEnricher:
    """Resolves requester emails (cached per run) and comment digests for tickets."""

    def __init__(self, client):
        self.client = client
        self._email_cache: Dict[object, str] = {}

    def requester_email(self, requester_id) -> str:
        if requester_id is None:
            return PLACEHOLDER
        if requester_id not in self._email_cache:
            user = self.client.get_user(requester_id)
            self._email_cache[requester_id] = user.get("email") or PLACEHOLDER
        return self._email_cache[requester_id]

    def enrich(self, ticket: dict) -> EnrichmentResult:
        """
        Enrich one ticket.

        A failed lookup degrades the affected field to PLACEHOLDER and is
        returned in `errors` so the caller can record the ticket id.
        """
        ticket_id = ticket.get("id")
        requester_id = ticket.get("requester_id")
        errors = []

        try:
            email = self.requester_email(requester_id)
        except ExportError as e:
            errors.append(EnrichmentError(ticket_id, f"requester lookup failed: {e}"))
            email = PLACEHOLDER

        try:
            body_digest = format_comments(self.client.list_comments(ticket_id), requester_id)
        except ExportError as e:
            errors.append(EnrichmentError(ticket_id, f"comment lookup failed: {e}"))
            body_digest = PLACEHOLDER

        via = ticket.get("via") or {}
        row = EnrichedRow(
            record_id=ticket_id,
            created_at=ticket.get("created_at") or "",
            requester_email=email,
            channel=_channel(via),
            subject=ticket.get("subject") or "",
            body_digest=body_digest,
        )
        return EnrichmentResult(row=row, errors=errors)


def _channel(via) -> str:
    if isinstance(via, dict):
        return via.get("channel") or ""
    return ""
