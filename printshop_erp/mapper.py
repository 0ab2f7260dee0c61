"""
Field mapping between application records and database rows.

Application code works with dicts keyed in camelCase; the database uses
snake_case columns.  Every entity declares its complete field list here.  The
generic rename rule (underscore before each capital, then lowercase) is only
used to build those lists, and each list states the exceptions where the rule
gets it wrong (``address1`` is stored as ``address_1``).  JSON columns are
copied as-is; approval route steps are the one nested shape that is renamed.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from . import models
from .config import INBOX_BUCKET, PROJECT_FILES_BUCKET
from .errors import NotFoundError
from .estimates import calc_totals

_UPPER = re.compile(r"[A-Z]")
_UNDERSCORE = re.compile(r"_([a-z0-9])")

PublicUrl = Callable[[str, str], str]


def to_snake(name: str) -> str:
    return _UPPER.sub(lambda m: "_" + m.group(0).lower(), name)


def to_camel(name: str) -> str:
    return _UNDERSCORE.sub(lambda m: m.group(1).upper(), name)


def field_map(*names: str, **renames: str) -> Tuple[Tuple[str, str], ...]:
    """Build ``(record_key, column)`` pairs; ``renames`` overrides the generic rule."""
    return tuple((name, renames.get(name, to_snake(name))) for name in names)


def row_to_dict(obj: Any) -> Dict[str, Any]:
    """Column values of an ORM instance, keyed by column name."""
    return {column.name: getattr(obj, column.key) for column in obj.__table__.columns}


class EntityMapping:
    """Declared fields and conversions for one entity kind."""

    def __init__(
        self,
        kind: str,
        model: Type[Any],
        fields: Sequence[Tuple[str, str]],
        *,
        read_only: Iterable[str] = ("id", "created_at"),
        order_by: Optional[Tuple[str, bool]] = ("created_at", True),
        filters: Optional[Dict[str, Any]] = None,
        file_bucket: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.model = model
        self.fields = tuple(fields)
        self.read_only = frozenset(read_only)
        self.order_by = order_by
        self.filters = dict(filters or {})
        self.file_bucket = file_bucket
        self._to_column = dict(self.fields)
        self._to_key = {column: key for key, column in self.fields}

    @property
    def table(self) -> str:
        return self.model.__tablename__

    def column_for(self, key: str) -> str:
        return self._to_column[key]

    def encode_value(self, key: str, value: Any) -> Any:
        return value

    def decode_value(self, key: str, value: Any) -> Any:
        return value

    def from_store(self, row: Dict[str, Any], public_url: Optional[PublicUrl] = None) -> Dict[str, Any]:
        record = {}
        for column, value in row.items():
            key = self._to_key.get(column)
            if key is not None:
                record[key] = self.decode_value(key, value)
        if self.file_bucket and public_url and row.get("file_path"):
            record["fileUrl"] = public_url(self.file_bucket, row["file_path"])
        return record

    def to_store(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Convert the declared keys present in ``record``; anything else is ignored."""
        row = {}
        for key, value in record.items():
            column = self._to_column.get(key)
            if column is not None:
                row[column] = self.encode_value(key, value)
        return row

    def writable(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {column: value for column, value in row.items() if column not in self.read_only}


class ApprovalRouteMapping(EntityMapping):
    def encode_value(self, key: str, value: Any) -> Any:
        if key != "routeData" or value is None:
            return value
        steps = value.get("steps") or []
        return {"steps": [{"approver_id": step.get("approverId")} for step in steps]}

    def decode_value(self, key: str, value: Any) -> Any:
        if key != "routeData":
            return value
        steps = (value or {}).get("steps") or []
        return {"steps": [{"approverId": step.get("approver_id")} for step in steps]}


class EstimateMapping(EntityMapping):
    """Totals are written only together with the items they are derived from."""

    _TOTALS = ("subtotal", "taxTotal", "grandTotal")

    def to_store(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = super().to_store({k: v for k, v in record.items() if k not in self._TOTALS})
        if "items" in record:
            totals = calc_totals(record.get("items") or [], bool(record.get("taxInclusive")))
            row["items"] = totals["items"]
            row["subtotal"] = totals["subtotal"]
            row["tax_total"] = totals["taxTotal"]
            row["grand_total"] = totals["grandTotal"]
        return row


JOB_FIELDS = field_map(
    "id", "jobNumber", "clientName", "title", "status", "dueDate", "quantity",
    "paperType", "finishing", "details", "price", "variableCost", "invoiceStatus",
    "invoicedAt", "paidAt", "readyToInvoice", "invoiceId", "manufacturingStatus",
    "projectId", "projectName", "userId", "createdAt",
)

CUSTOMER_FIELDS = field_map(
    "id", "customerCode", "customerName", "customerNameKana", "name2", "representative",
    "phoneNumber", "fax", "postNo", "zipCode", "address1", "address2", "websiteUrl",
    "companyContent", "annualSales", "employeesCount", "foundationDate", "capital",
    "customerRank", "customerDivision", "salesType", "creditLimit", "closingDay",
    "payDay", "payMoney", "monthlyPlan", "recoveryMethod", "bankName", "branchName",
    "accountNo", "salesUserCode", "startDate", "endDate", "drawingDate", "salesGoal",
    "note", "infoSalesActivity", "infoRequirements", "infoHistory", "infoSalesIdeas",
    "customerContactInfo", "aiAnalysis", "userId", "createdAt",
    address1="address_1",
    address2="address_2",
)

LEAD_FIELDS = field_map(
    "id", "status", "name", "email", "phone", "company", "source", "tags", "message",
    "referrer", "referrerUrl", "landingPageUrl", "searchKeywords", "utmSource",
    "utmMedium", "utmCampaign", "utmTerm", "utmContent", "userAgent", "ipAddress",
    "deviceType", "browserName", "osName", "country", "city", "region", "employees",
    "budget", "timeline", "inquiryType", "inquiryTypes", "infoSalesActivity", "score",
    "aiAnalysisReport", "aiDraftProposal", "aiInvestigation", "createdAt", "updatedAt",
)

ESTIMATE_FIELDS = field_map(
    "id", "estimateNumber", "customerName", "title", "items", "subtotal", "taxTotal",
    "grandTotal", "taxInclusive", "deliveryDate", "paymentTerms", "deliveryTerms",
    "deliveryMethod", "notes", "status", "version", "userId", "projectId",
    "projectName", "pdfUrl", "tracking", "postal", "createdAt", "updatedAt",
)

INVOICE_FIELDS = field_map(
    "id", "invoiceNo", "invoiceDate", "dueDate", "customerName", "subtotalAmount",
    "taxAmount", "totalAmount", "status", "paidAt", "createdAt",
)

INVOICE_ITEM_FIELDS = field_map(
    "id", "invoiceId", "jobId", "description", "quantity", "unit", "unitPrice",
    "lineTotal", "sortIndex",
)

PURCHASE_ORDER_FIELDS = field_map(
    "id", "supplierName", "itemName", "orderDate", "quantity", "unitPrice", "status", "createdAt",
)

INVENTORY_ITEM_FIELDS = field_map(
    "id", "name", "category", "quantity", "unit", "unitPrice", "createdAt",
)

BUG_REPORT_FIELDS = field_map(
    "id", "reporterName", "reportType", "summary", "description", "status", "createdAt",
)

PROJECT_FIELDS = field_map(
    "id", "projectName", "customerName", "customerId", "status", "overview",
    "extractedDetails", "userId", "createdAt", "updatedAt",
)

PROJECT_ATTACHMENT_FIELDS = field_map(
    "id", "projectId", "fileName", "filePath", "mimeType", "category", "createdAt",
)

APPLICATION_CODE_FIELDS = field_map("id", "code", "name", "description", "createdAt")

APPROVAL_ROUTE_FIELDS = field_map("id", "name", "routeData", "createdAt")

APPLICATION_FIELDS = field_map(
    "id", "applicantId", "applicationCodeId", "approvalRouteId", "formData", "status",
    "currentLevel", "approverId", "rejectionReason", "submittedAt", "approvedAt",
    "rejectedAt", "createdAt",
)

INBOX_ITEM_FIELDS = field_map(
    "id", "fileName", "filePath", "mimeType", "status", "extractedData", "errorMessage", "createdAt",
)

USER_FIELDS = field_map("id", "name", "email", "role", "canUseAnythingAnalysis", "createdAt")

EMPLOYEE_FIELDS = field_map(
    "id", "userId", "name", "department", "title", "hireDate", "isActive", "createdAt",
)

JOURNAL_ENTRY_FIELDS = field_map("id", "date", "account", "description", "debit", "credit")

ACCOUNT_ITEM_FIELDS = field_map(
    "id", "code", "name", "categoryCode", "isActive", "sortOrder", "createdAt", "updatedAt",
)

PAYMENT_RECIPIENT_FIELDS = field_map("id", "recipientCode", "companyName", "recipientName")

ALLOCATION_DIVISION_FIELDS = field_map("id", "name", "isActive", "createdAt")

DEPARTMENT_FIELDS = field_map("id", "name")

TITLE_FIELDS = field_map("id", "name", "isActive", "createdAt")

ANALYSIS_HISTORY_FIELDS = field_map(
    "id", "userId", "viewpoint", "dataSources", "result", "createdAt",
)

_TIMESTAMPS = ("id", "created_at", "updated_at")

MAPPINGS: Dict[str, EntityMapping] = {
    m.kind: m
    for m in [
        EntityMapping("jobs", models.Job, JOB_FIELDS, read_only=("id", "created_at", "job_number")),
        EntityMapping("customers", models.Customer, CUSTOMER_FIELDS),
        EntityMapping("leads", models.Lead, LEAD_FIELDS, read_only=_TIMESTAMPS),
        EstimateMapping(
            "estimates", models.Estimate, ESTIMATE_FIELDS, read_only=_TIMESTAMPS + ("estimate_number",)
        ),
        EntityMapping("invoices", models.Invoice, INVOICE_FIELDS, order_by=("invoice_date", True)),
        EntityMapping("invoice_items", models.InvoiceItem, INVOICE_ITEM_FIELDS, read_only=("id",), order_by=("sort_index", False)),
        EntityMapping("purchase_orders", models.PurchaseOrder, PURCHASE_ORDER_FIELDS, order_by=("order_date", True)),
        EntityMapping("inventory_items", models.InventoryItem, INVENTORY_ITEM_FIELDS, order_by=("name", False)),
        EntityMapping("bug_reports", models.BugReport, BUG_REPORT_FIELDS),
        EntityMapping("projects", models.Project, PROJECT_FIELDS, read_only=_TIMESTAMPS),
        EntityMapping(
            "project_attachments", models.ProjectAttachment, PROJECT_ATTACHMENT_FIELDS,
            file_bucket=PROJECT_FILES_BUCKET,
        ),
        EntityMapping("application_codes", models.ApplicationCode, APPLICATION_CODE_FIELDS, order_by=("code", False)),
        ApprovalRouteMapping("approval_routes", models.ApprovalRoute, APPROVAL_ROUTE_FIELDS, order_by=("name", False)),
        EntityMapping("applications", models.Application, APPLICATION_FIELDS),
        EntityMapping("inbox_items", models.InboxItem, INBOX_ITEM_FIELDS, file_bucket=INBOX_BUCKET),
        EntityMapping("users", models.User, USER_FIELDS, read_only=("created_at",), order_by=("name", False)),
        EntityMapping("employees", models.Employee, EMPLOYEE_FIELDS, order_by=("name", False)),
        EntityMapping("journal_entries", models.JournalEntry, JOURNAL_ENTRY_FIELDS, read_only=("id",), order_by=("date", True)),
        EntityMapping("account_items", models.AccountItem, ACCOUNT_ITEM_FIELDS, read_only=_TIMESTAMPS, order_by=("code", False)),
        EntityMapping("payment_recipients", models.PaymentRecipient, PAYMENT_RECIPIENT_FIELDS, read_only=("id",), order_by=("company_name", False)),
        EntityMapping(
            "allocation_divisions", models.AllocationDivision, ALLOCATION_DIVISION_FIELDS,
            order_by=("name", False), filters={"is_active": True},
        ),
        EntityMapping("departments", models.Department, DEPARTMENT_FIELDS, read_only=("id",), order_by=("name", False)),
        EntityMapping(
            "titles", models.Title, TITLE_FIELDS, order_by=("name", False), filters={"is_active": True},
        ),
        EntityMapping("analysis_history", models.AnalysisHistory, ANALYSIS_HISTORY_FIELDS),
    ]
}


def get_mapping(kind: str) -> EntityMapping:
    try:
        return MAPPINGS[kind]
    except KeyError:
        raise NotFoundError(f"Unknown entity kind: {kind}") from None


def kinds() -> List[str]:
    return sorted(MAPPINGS)
