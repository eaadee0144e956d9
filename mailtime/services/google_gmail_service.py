"""
Google Gmail API Service for the email activity tracker.
Pure API client: profile (current historyId), history list and message
metadata. HTTP failures are mapped onto the tracker's error taxonomy.
/services/google_gmail_service.py
"""

from typing import Any

import httpx

from mailtime.config import settings
from mailtime.features.email_tracking.errors import (
    AuthError,
    GmailHistoryError,
    StaleCursorError,
    TransientFetchError,
)
from mailtime.infrastructure.observability.logging import get_logger
from mailtime.models.domain.gmail_domain import HistoryPage, MessageMetadata

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"

HISTORY_TYPES = ["labelAdded", "labelRemoved"]
MAX_HISTORY_PAGES = 50  # Gmail returns up to 500 records per page
AUTH_STATUS_CODES = {401, 403}
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class GoogleGmailService:
    """
    Service for the Gmail API calls the tracker depends on.

    Every call opens a short-lived httpx.AsyncClient; the transport can be
    injected so tests never touch the network.
    """

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base_url: str = GMAIL_API_BASE_URL,
    ):
        self.timeout = timeout or settings.GMAIL_REQUEST_TIMEOUT
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _get_auth_headers(self, access_token: str | None) -> dict:
        if not access_token:
            raise AuthError("No Gmail access token available", error_code="missing_credential")
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _get(
        self, access_token: str | None, path: str, params: Any, operation: str
    ) -> dict:
        headers = self._get_auth_headers(access_token)
        url = f"{self.base_url}/users/{GMAIL_USER_ID}/{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers, params=params)
        except httpx.RequestError as e:
            logger.warning(
                f"Gmail API {operation} request error",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransientFetchError(f"Gmail {operation} request failed: {e}") from e

        return self._handle_api_response(response, operation)

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Validate a Gmail API response and return its JSON body.

        Raises:
            AuthError: 401/403
            StaleCursorError: 404 from the history endpoint
            TransientFetchError: timeouts, rate limits, 5xx, unparseable bodies
            GmailHistoryError: any other failure
        """
        logger.debug(
            f"Gmail API {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise TransientFetchError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.content else {}
        except ValueError:
            error_data = {}
        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_message = error_info.get("message", f"HTTP {response.status_code}")
        status = response.status_code

        logger.warning(
            f"Gmail API {operation} failed",
            status_code=status,
            error_message=error_message,
        )

        kwargs = {
            "error_code": str(error_info.get("code", status)),
            "status_code": status,
            "response_data": error_data,
        }
        if status in AUTH_STATUS_CODES:
            raise AuthError(f"Gmail authorization failed: {error_message}", **kwargs)
        if status == 404 and operation == "list_history":
            raise StaleCursorError(f"History cursor no longer valid: {error_message}", **kwargs)
        if status in TRANSIENT_STATUS_CODES:
            raise TransientFetchError(f"Gmail temporarily unavailable: {error_message}", **kwargs)
        raise GmailHistoryError(f"Gmail error: {error_message}", **kwargs)

    async def get_current_history_id(self, access_token: str | None) -> str:
        """Current mailbox position, from the profile endpoint."""
        data = await self._get(access_token, "profile", None, "get_profile")
        history_id = data.get("historyId")
        if not history_id:
            raise TransientFetchError("Gmail profile response had no historyId")

        logger.info("Fetched current Gmail history id", history_id=str(history_id))
        return str(history_id)

    async def list_history(self, access_token: str | None, start_history_id: str) -> HistoryPage:
        """
        Fetch every history record after start_history_id, following pages.

        Returns:
            HistoryPage: records in provider order and the position to resume
            from (the latest historyId, or the last fetched record when the
            page limit cut the fetch short)
        """
        pages = []
        page_token = None
        complete = True

        for _ in range(MAX_HISTORY_PAGES):
            params = [("startHistoryId", start_history_id)]
            params.extend(("historyTypes", history_type) for history_type in HISTORY_TYPES)
            if page_token:
                params.append(("pageToken", page_token))

            data = await self._get(access_token, "history", params, "list_history")
            pages.append(data)

            page_token = data.get("nextPageToken")
            if not page_token:
                break
        else:
            # Remaining pages are picked up next tick from the last fetched record
            complete = False
            logger.warning(
                "History page limit reached",
                start_history_id=start_history_id,
                max_pages=MAX_HISTORY_PAGES,
            )

        history = HistoryPage.from_pages(pages, complete=complete)
        logger.debug(
            "History fetched",
            start_history_id=start_history_id,
            record_count=len(history.records),
            page_count=len(pages),
        )
        return history

    async def get_message_metadata(self, access_token: str | None, message_id: str) -> MessageMetadata:
        """Subject and From headers of one message."""
        params = [
            ("format", "metadata"),
            ("metadataHeaders", "Subject"),
            ("metadataHeaders", "From"),
        ]
        data = await self._get(access_token, f"messages/{message_id}", params, "get_message")
        return MessageMetadata(data)
