"""
Duration and classification engine.

Turns a closed session into exactly one draft activity record. Client and
project come from an ordered rule list evaluated first-match-wins; when no
rule matches, the record is still produced with "unclassified" values.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, tzinfo

from mailtime.config import settings
from mailtime.features.email_tracking.domain.models import DraftActivityRecord, Session
from mailtime.models.domain.gmail_domain import extract_domain, parse_email_address

UNCLASSIFIED = "unclassified"
DESCRIPTION_SUBJECT_LIMIT = 100


@dataclass(slots=True, frozen=True)
class Classification:
    client: str
    project: str


@dataclass(slots=True, frozen=True)
class ClassificationRule:
    """A named (predicate, outcome) pair."""

    name: str
    predicate: Callable[[Session], bool]
    outcome: Callable[[Session], Classification]


def sender_domain_rule(client_domains: dict[str, str]) -> ClassificationRule:
    """Sender domain found in the client table -> that client."""
    table = {domain.lower(): client for domain, client in client_domains.items()}

    def matches(session: Session) -> bool:
        return extract_domain(session.sender) in table

    def outcome(session: Session) -> Classification:
        return Classification(client=table[extract_domain(session.sender)], project=UNCLASSIFIED)

    return ClassificationRule("sender_domain", matches, outcome)


def subject_keyword_rule(project_keywords: dict[str, str]) -> ClassificationRule:
    """First keyword (table order) contained in the subject -> that project."""
    keywords = [(keyword.lower(), project) for keyword, project in project_keywords.items()]

    def find(session: Session) -> str | None:
        subject = session.subject.lower()
        for keyword, project in keywords:
            if keyword in subject:
                return project
        return None

    def outcome(session: Session) -> Classification:
        return Classification(client=UNCLASSIFIED, project=find(session))

    return ClassificationRule("subject_keyword", lambda session: find(session) is not None, outcome)


FALLBACK_RULE = ClassificationRule(
    "fallback",
    lambda session: True,
    lambda session: Classification(client=UNCLASSIFIED, project=UNCLASSIFIED),
)


def default_rules() -> list[ClassificationRule]:
    return [
        sender_domain_rule(settings.TRACKER_CLIENT_DOMAINS),
        subject_keyword_rule(settings.TRACKER_PROJECT_KEYWORDS),
    ]


class ActivityClassifier:
    """Builds draft records from closed sessions."""

    def __init__(
        self,
        rules: list[ClassificationRule] | None = None,
        billable_domains: list[str] | None = None,
        tz: tzinfo = UTC,
    ):
        self.rules = list(rules if rules is not None else default_rules())
        self.billable_domains = {
            domain.lower()
            for domain in (
                billable_domains if billable_domains is not None else settings.TRACKER_BILLABLE_DOMAINS
            )
        }
        self.tz = tz

    def classify(self, session: Session) -> Classification:
        rule = next(rule for rule in [*self.rules, FALLBACK_RULE] if rule.predicate(session))
        return rule.outcome(session)

    def is_billable(self, sender: str) -> bool:
        """
        Billable unless the sender has a real domain and a configured
        allow-list does not contain it.
        """
        domain = extract_domain(sender)
        if not self.billable_domains or domain is None:
            return True
        return domain in self.billable_domains

    def build_draft_record(self, session: Session) -> DraftActivityRecord:
        if session.estimated_duration_minutes is None:
            raise ValueError(f"Session {session.message_id} is still open")

        classification = self.classify(session)
        opened_local = session.opened_at.astimezone(self.tz)
        sender_email = parse_email_address(session.sender)["email"] or session.sender

        return DraftActivityRecord(
            id=f"email-{session.message_id}-{int(session.opened_at.timestamp())}",
            message_id=session.message_id,
            date=opened_local.date().isoformat(),
            start_time=opened_local.strftime("%H:%M"),
            duration_hours=session.estimated_duration_minutes / 60,
            description=(
                f"Email: {session.subject[:DESCRIPTION_SUBJECT_LIMIT]} (from {sender_email})"
            ),
            inferred_client=classification.client,
            inferred_project=classification.project,
            billable=self.is_billable(session.sender),
            close_reason=session.close_reason.value if session.close_reason else None,
        )
