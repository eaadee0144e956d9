"""Shared fakes and builders for the email tracking tests."""

from datetime import datetime, timedelta

from mailtime.models.domain.gmail_domain import HistoryPage, HistoryRecord, MessageMetadata


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def set(self, hour: int, minute: int = 0, second: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute, second=second)


class FakeGmailService:
    """Scripted stand-in for GoogleGmailService."""

    def __init__(self):
        self.current_history_id = "1000"
        self.profile_calls = 0
        self.profile_error: Exception | None = None
        self.history_responses: list = []
        self.history_calls: list[str] = []
        self.metadata: dict[str, dict] = {}
        self.metadata_errors: dict[str, Exception] = {}
        self.metadata_calls: list[str] = []
        self.tokens: list[str | None] = []

    async def get_current_history_id(self, access_token):
        self.tokens.append(access_token)
        self.profile_calls += 1
        if self.profile_error:
            raise self.profile_error
        return self.current_history_id

    async def list_history(self, access_token, start_history_id):
        self.tokens.append(access_token)
        self.history_calls.append(start_history_id)
        if not self.history_responses:
            return HistoryPage(records=[], history_id=start_history_id)
        response = self.history_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def get_message_metadata(self, access_token, message_id):
        self.tokens.append(access_token)
        self.metadata_calls.append(message_id)
        if message_id in self.metadata_errors:
            raise self.metadata_errors[message_id]
        info = self.metadata.get(message_id, {})
        headers = [
            {"name": "Subject", "value": info.get("subject", f"Subject {message_id}")},
            {"name": "From", "value": info.get("from", "Someone <someone@example.net>")},
        ]
        return MessageMetadata({"id": message_id, "payload": {"headers": headers}})


def read_record(record_id: str, *message_ids: str) -> HistoryRecord:
    """History record in which each message lost its UNREAD label."""
    return HistoryRecord(
        {
            "id": record_id,
            "labelsRemoved": [
                {"message": {"id": message_id, "threadId": f"t-{message_id}"}, "labelIds": ["UNREAD"]}
                for message_id in message_ids
            ],
        }
    )


def history_page(*records: HistoryRecord, history_id: str = "2000") -> HistoryPage:
    return HistoryPage(records=list(records), history_id=history_id)

