# mailtime/models/domain/gmail_domain.py
"""
Gmail Domain Models
Parsed views over the Gmail history and message-metadata API payloads.
Only the fields the email tracker needs are kept.
"""

from dataclasses import dataclass, field

UNREAD_LABEL = "UNREAD"


def parse_email_address(address_str: str) -> dict[str, str]:
    """Parse "John Doe <john@example.com>" or "john@example.com" into name/email."""
    if not address_str:
        return {"name": "", "email": ""}

    if "<" in address_str and ">" in address_str:
        name_part = address_str.split("<")[0].strip().strip('"')
        email_part = address_str.split("<")[1].split(">")[0].strip()
        return {"name": name_part, "email": email_part}

    # No angle brackets: first token is the best guess at an address
    parts = address_str.strip().split()
    return {"name": "", "email": parts[0] if parts else ""}


def extract_domain(address_str: str) -> str | None:
    """Lower-cased domain of a From header, or None when there is no '@'."""
    email = parse_email_address(address_str)["email"]
    if "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


@dataclass(slots=True)
class ReadTransition:
    """A message whose UNREAD label was removed in a history record."""

    record_id: str
    message_id: str


class HistoryRecord:
    """Domain model for a single Gmail history record."""

    def __init__(self, data: dict):
        self.id = str(data.get("id", ""))
        self.labels_removed = data.get("labelsRemoved", [])

    def read_transitions(self) -> list[ReadTransition]:
        """
        Messages that went from unread to read in this record.

        Only UNREAD removals count; a message becoming unread again (UNREAD
        added) is ignored.
        """
        transitions = []
        for change in self.labels_removed:
            if UNREAD_LABEL not in change.get("labelIds", []):
                continue
            message_id = change.get("message", {}).get("id")
            if message_id:
                transitions.append(ReadTransition(record_id=self.id, message_id=message_id))
        return transitions


@dataclass(slots=True)
class HistoryPage:
    """All history records since a cursor plus the provider's current position."""

    records: list[HistoryRecord] = field(default_factory=list)
    history_id: str | None = None

    @classmethod
    def from_pages(cls, pages: list[dict], complete: bool = True) -> "HistoryPage":
        """
        Merge raw history.list pages.

        When paging stopped early, the mailbox historyId would skip the
        unfetched pages, so the position is the last fetched record instead
        (None if nothing was fetched).
        """
        records = []
        history_id = None
        for page in pages:
            records.extend(HistoryRecord(item) for item in page.get("history", []))
            if page.get("historyId"):
                history_id = str(page["historyId"])
        if not complete:
            history_id = next((r.id for r in reversed(records) if r.id), None)
        return cls(records=records, history_id=history_id)

    def read_transitions(self) -> list[ReadTransition]:
        transitions = []
        for record in self.records:
            transitions.extend(record.read_transitions())
        return transitions


class MessageMetadata:
    """Subject and sender of a message, from a format=metadata fetch."""

    DEFAULT_SUBJECT = "(No Subject)"
    DEFAULT_SENDER = "Unknown"

    def __init__(self, data: dict):
        self.id = data.get("id")
        headers = data.get("payload", {}).get("headers", [])
        self.headers = {h["name"].lower(): h["value"] for h in headers if "name" in h}
        self.subject = self.headers.get("subject") or self.DEFAULT_SUBJECT
        self.sender = self.headers.get("from") or self.DEFAULT_SENDER

    @classmethod
    def placeholder(cls, message_id: str) -> "MessageMetadata":
        """Metadata used when the fetch fails; sessions are still tracked."""
        return cls({"id": message_id})
