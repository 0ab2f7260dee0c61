"""
OCR intake for invoices and receipts.

An uploaded document becomes an inbox item and moves through

    processing -> pending_review | error
    pending_review -> approved

Extraction runs right after upload.  A reviewer can correct the extracted
data while the item is pending review; approving it posts the expense to
the journal and only then marks the item approved.
"""

from __future__ import annotations

import datetime as _dt
import logging
from enum import Enum
from typing import Any, Dict, Optional

from .ai_service import AIService
from .config import INBOX_BUCKET
from .data_service import DataService
from .errors import InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)


class InboxStatus(str, Enum):
    PROCESSING = "processing"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    ERROR = "error"


def _entry_date(value: Optional[str]) -> _dt.datetime:
    if value:
        try:
            return _dt.datetime.strptime(value[:10], "%Y-%m-%d")
        except ValueError:
            logger.warning("Ignoring unreadable invoice date %r", value)
    return _dt.datetime.utcnow()


class InboxProcessor:
    def __init__(self, data: DataService, ai: AIService) -> None:
        self.data = data
        self.ai = ai

    def ingest(self, file_name: str, content: bytes, mime_type: str) -> Dict[str, Any]:
        """Upload a document, record it and run extraction on it.

        Extraction failures are stored on the item as ``error``; only AI being
        switched off or offline stops the upload itself.
        """
        self.ai.client.ensure_available()
        path = self.data.upload_file(INBOX_BUCKET, file_name, content, mime_type)
        try:
            item = self.data.add_inbox_item(
                {
                    "fileName": file_name,
                    "filePath": path,
                    "mimeType": mime_type,
                    "status": InboxStatus.PROCESSING.value,
                }
            )
        except Exception:
            self.data.discard_files(INBOX_BUCKET, [path])
            raise
        try:
            extracted = self.ai.extract_invoice_details(
                content,
                mime_type,
                self.data.list_active_account_items(),
                self.data.list("allocation_divisions"),
            )
        except Exception as exc:
            logger.error("Extraction failed for inbox item %s: %s", item["id"], exc)
            return self.data.update_inbox_item(
                item["id"], {"status": InboxStatus.ERROR.value, "errorMessage": str(exc)}
            )
        return self.data.update_inbox_item(
            item["id"], {"status": InboxStatus.PENDING_REVIEW.value, "extractedData": extracted}
        )

    def save_review(self, item_id: str, extracted: Dict[str, Any]) -> Dict[str, Any]:
        item = self.data.get("inbox_items", item_id)
        if item["status"] != InboxStatus.PENDING_REVIEW.value:
            raise InvalidTransitionError(f"Inbox item is {item['status']}, not pending review.")
        return self.data.update_inbox_item(item_id, {"extractedData": extracted})

    def approve(self, item_id: str) -> Dict[str, Any]:
        item = self.data.get("inbox_items", item_id)
        if item["status"] != InboxStatus.PENDING_REVIEW.value:
            raise InvalidTransitionError(f"Inbox item is {item['status']}, not pending review.")
        extracted = item.get("extractedData")
        if not extracted:
            raise ValidationError("There is no extracted data to approve.", fields={"extractedData": "Required."})
        if not extracted.get("account"):
            raise ValidationError("An account is required.", fields={"account": "This field is required."})
        self.data.add_journal_entry(
            {
                "date": _entry_date(extracted.get("invoiceDate")),
                "account": extracted["account"],
                "description": f"{extracted.get('vendorName') or ''} - {extracted.get('description') or ''}".strip(" -"),
                "debit": float(extracted.get("totalAmount") or 0),
                "credit": 0,
            }
        )
        logger.info("Posted inbox item %s to the journal", item_id)
        return self.data.update_inbox_item(item_id, {"status": InboxStatus.APPROVED.value})

    def delete(self, item_id: str) -> None:
        self.data.delete_inbox_item(self.data.get("inbox_items", item_id))
