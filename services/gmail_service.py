from __future__ import annotations

import base64
import logging
from email.message import EmailMessage as MimeMessage
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Sequence

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from models.email_message import EmailMessage
from services.auth_service import AuthService
from utils.config import AccountConfig

LOGGER = logging.getLogger(__name__)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in (429, 500, 503)


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    stop=stop_after_attempt(4),
    reraise=True,
)
def _execute(request) -> Dict:
    return request.execute()


class GmailService:
    """Wrapper around the Gmail API for the operations we need."""

    def __init__(self, account: AccountConfig, auth_service: AuthService | None = None, client: Any = None):
        self._account = account
        if client is None:
            creds = (auth_service or AuthService(account)).authenticate()
            client = build("gmail", "v1", credentials=creds, cache_discovery=False)
        self._client = client
        self._label_cache: Dict[str, str] = {}

    @property
    def user_id(self) -> str:
        return self._account.user_id

    def list_message_ids(self, query: str, max_results: int) -> List[str]:
        try:
            response = _execute(
                self._client.users().messages().list(userId=self.user_id, q=query, maxResults=max_results)
            )
        except HttpError as exc:
            LOGGER.error("Failed to list messages for %r: %s", query, exc)
            raise
        ids = [message["id"] for message in response.get("messages", []) or []]
        LOGGER.info("Found %s messages for query %r", len(ids), query)
        return ids

    def get_raw_message(self, message_id: str) -> Dict:
        return _execute(self._client.users().messages().get(userId=self.user_id, id=message_id, format="full"))

    def get_message(self, message_id: str) -> EmailMessage:
        return parse_message(self.get_raw_message(message_id))

    def modify_labels(
        self, message_id: str, add: Sequence[str] = (), remove: Sequence[str] = ()
    ) -> Dict:
        if not add and not remove:
            LOGGER.debug("No label changes supplied for message %s", message_id)
            return {}
        body = {"addLabelIds": list(add), "removeLabelIds": list(remove)}
        response = _execute(
            self._client.users().messages().modify(userId=self.user_id, id=message_id, body=body)
        )
        LOGGER.debug("Modified labels on %s: +%s -%s", message_id, list(add), list(remove))
        return response

    def ensure_label(self, label_name: str) -> str:
        cached = self._label_cache.get(label_name.lower())
        if cached:
            return cached
        for label in self._list_labels():
            if label["name"].lower() == label_name.lower():
                LOGGER.debug("Label %s already exists as %s", label_name, label["id"])
                self._label_cache[label_name.lower()] = label["id"]
                return label["id"]
        body = {"name": label_name, "labelListVisibility": "labelShow", "messageListVisibility": "show"}
        response = _execute(self._client.users().labels().create(userId=self.user_id, body=body))
        LOGGER.info("Created label %s with id %s", label_name, response["id"])
        self._label_cache[label_name.lower()] = response["id"]
        return response["id"]

    def create_draft(self, message: EmailMessage, body_text: str) -> str:
        raw = build_reply_raw(message, body_text)
        request_body = {"message": {"raw": raw, "threadId": message.thread_id}}
        response = _execute(self._client.users().drafts().create(userId=self.user_id, body=request_body))
        LOGGER.info("Draft %s created for %r", response.get("id"), message.subject[:50])
        return response.get("id", "")

    def send_reply(self, message: EmailMessage, body_text: str) -> str:
        raw = build_reply_raw(message, body_text)
        response = _execute(
            self._client.users().messages().send(
                userId=self.user_id, body={"raw": raw, "threadId": message.thread_id}
            )
        )
        LOGGER.info("Reply %s sent to %s", response.get("id"), message.sender)
        return response.get("id", "")

    def trash_message(self, message_id: str) -> None:
        _execute(self._client.users().messages().trash(userId=self.user_id, id=message_id))
        LOGGER.info("Moved message %s to trash", message_id)

    def _list_labels(self) -> List[Dict]:
        response = _execute(self._client.users().labels().list(userId=self.user_id))
        return response.get("labels", [])


def reply_subject(subject: str) -> str:
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


def build_reply_raw(message: EmailMessage, body_text: str) -> str:
    """RFC-822 reply threaded to ``message``, base64url-encoded for the Gmail API."""

    mime = MimeMessage()
    mime["To"] = message.sender
    mime["Subject"] = reply_subject(message.subject)
    if message.message_id_header:
        mime["In-Reply-To"] = message.message_id_header
        mime["References"] = message.message_id_header
    mime.set_content(body_text, charset="utf-8")
    return base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii").rstrip("=")


def parse_message(response: Dict) -> EmailMessage:
    payload = response.get("payload", {}) or {}
    headers = _headers_to_dict(payload.get("headers", []))
    received_at = None
    if date_header := headers.get("date"):
        try:
            received_at = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            LOGGER.debug("Unable to parse date header: %s", date_header)
    return EmailMessage(
        id=response["id"],
        thread_id=response.get("threadId"),
        subject=headers.get("subject", "(no subject)"),
        body=_extract_body(payload),
        snippet=response.get("snippet", ""),
        sender=headers.get("from", ""),
        recipient=headers.get("to", ""),
        message_id_header=headers.get("message-id", ""),
        labels=tuple(response.get("labelIds", []) or []),
        received_at=received_at,
    )


def _headers_to_dict(headers: Sequence[Dict[str, str]]) -> Dict[str, str]:
    mapped: Dict[str, str] = {}
    for header in headers:
        name = header.get("name", "").lower()
        mapped[name] = header.get("value", "")
    return mapped


def _extract_body(payload: Dict) -> str:
    if payload.get("body", {}).get("data") and not payload.get("parts"):
        return _decode_base64(payload["body"]["data"])
    chunks: List[str] = []
    for part in payload.get("parts", []) or []:
        if part.get("mimeType", "") == "text/plain" and part.get("body", {}).get("data"):
            chunks.append(_decode_base64(part["body"]["data"]))
        elif part.get("parts"):
            nested = _extract_body(part)
            if nested:
                chunks.append(nested)
    return "".join(chunks)


def _decode_base64(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return ""
