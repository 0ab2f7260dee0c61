"""
AI features for printshop-erp.

Each method of :class:`AIService` builds a short prompt, sends it through
:class:`~printshop_erp.ai_client.AIClient` and shapes the answer.  Structured
answers are parsed as JSON; a handful of features return a fallback object
instead of failing when the model answers with something that is not JSON.
The heuristics at the top of the module fill gaps in AI estimate drafts.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .ai_client import SUPPORTED_ATTACHMENT_TYPES, AIClient, Attachment, ChatSession
from .errors import AIResponseParseError
from .estimates import DEFAULT_TAX_RATE

logger = logging.getLogger(__name__)

DEFAULT_LINE = {"name": "一式", "qty": 1, "unit": "式", "unitPrice": 0, "taxRate": DEFAULT_TAX_RATE}
DEFAULT_SUBJECT = "御見積のご送付"
DEFAULT_EMAIL_SUBJECT = "ご提案の件"

DRAFT_DEFAULTS = {
    "deliveryTerms": "通常納期（要確認）",
    "paymentTerms": "当月末締め翌月末支払（銀行振込）",
    "deliveryMethod": "メール送付",
    "notes": "AIによる自動生成見積下書きです。内容は担当者にご確認ください。",
    "currency": "JPY",
}

_QTY = re.compile(r"(\d+)\s*(部|枚|式|箱|冊|本|件)?")
_MARKED_PRICE = re.compile(r"[@＠]\s*[¥￥]?\s*([\d,]+)|[¥￥]\s*([\d,]+)|([\d,]+)\s*円")
_ANY_NUMBER = re.compile(r"([\d,]+)")
_EMAIL = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_COMPANY = re.compile(r"(株|株式会社|有限会社|合同会社)[^\s　]+")
_HONORIFIC = re.compile(r"様|御中")
_SUBJECT_LINE = re.compile(r"(件名|Subject)[:：]\s*(.+)$", re.MULTILINE)
_EMAIL_SUBJECT = re.compile(r"件名:\s*(.*)")
_EMAIL_BODY = re.compile(r"本文:\s*([\s\S]*)")


def format_jpy(amount: float) -> str:
    return f"¥{amount:,.0f}"


def _parse_number(value: str) -> float:
    cleaned = re.sub(r"[^\d.-]", "", value)
    try:
        return float(cleaned)
    except ValueError:
        return 0


def rough_extract_lines(text: str) -> List[Dict[str, Any]]:
    """Pull ``name / qty / unit / unitPrice`` out of lines like ``名刺100部 @¥2,500``.

    Always returns at least one line.
    """
    lines = []
    for line in (s.strip() for s in (text or "").splitlines()):
        if not line:
            continue
        qty_match = _QTY.search(line)
        price_match = _MARKED_PRICE.search(line) or _ANY_NUMBER.search(line)
        if not (qty_match and price_match):
            continue
        price = next(g for g in price_match.groups() if g)
        lines.append(
            {
                "name": re.sub(r"\s*[@＠].*$", "", line),
                "qty": int(qty_match.group(1)),
                "unit": qty_match.group(2) or "式",
                "unitPrice": _parse_number(price),
                "taxRate": DEFAULT_TAX_RATE,
            }
        )
    return lines or [dict(DEFAULT_LINE)]


def rough_extract_customer(text: str) -> List[Dict[str, Any]]:
    text = text or ""
    email = _EMAIL.search(text)
    company = _COMPANY.search(text)
    person = None
    if _HONORIFIC.search(text):
        person = _HONORIFIC.sub("", text.splitlines()[0]).strip() or None
    candidate = {
        "company": company.group(0) if company else None,
        "person": person,
        "email": email.group(0) if email else None,
        "confidence": 0.6,
    }
    if candidate["company"] or candidate["person"] or candidate["email"]:
        return [candidate]
    return []


def guess_subject(text: str) -> str:
    text = text or ""
    match = _SUBJECT_LINE.search(text)
    if match and match.group(2).strip():
        return match.group(2).strip()
    for line in text.splitlines():
        if len(line) >= 5:
            return line[:40]
    return DEFAULT_SUBJECT


def split_email(text: str) -> Dict[str, str]:
    """Split ``件名: ...`` / ``本文: ...`` model output into subject and body."""
    subject = _EMAIL_SUBJECT.search(text)
    body = _EMAIL_BODY.search(text)
    return {
        "subject": subject.group(1).strip() if subject else DEFAULT_EMAIL_SUBJECT,
        "body": body.group(1).strip() if body else text,
    }


def _attachments(files: Iterable[Dict[str, Any]]) -> List[Attachment]:
    """Keep the files the model can read; others are skipped."""
    return [
        Attachment(data=f["data"], mime_type=f["mimeType"], file_name=f.get("name") or "attachment")
        for f in files
        if f.get("mimeType") in SUPPORTED_ATTACHMENT_TYPES
    ]


def _string(description: str = "") -> Dict[str, Any]:
    return {"type": "string", "description": description} if description else {"type": "string"}


def _object(properties: Dict[str, Any], required: Sequence[str] = ()) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(required)}


LINE_ITEM_SCHEMA = _object(
    {
        "name": _string("Work item or product, with paper and finishing details"),
        "description": _string(),
        "qty": {"type": "number"},
        "unit": _string("e.g. 部, 枚, 式, 連, 月"),
        "unitPrice": {"type": "number"},
        "taxRate": {"type": "number", "description": "Decimal tax rate, e.g. 0.1"},
    },
    ["name", "qty", "unitPrice"],
)

SUGGEST_JOB_SCHEMA = _object(
    {
        "title": _string("Short professional job title"),
        "quantity": {"type": "integer"},
        "paperType": _string("One of the offered paper types"),
        "finishing": _string("One of the offered finishing options"),
        "details": _string("Specification: colours, sides, purpose"),
        "price": {"type": "integer", "description": "Realistic selling price in JPY"},
        "variableCost": {"type": "integer", "description": "Variable cost, usually 40-60% of price"},
    },
    ["title", "quantity", "paperType", "finishing", "details", "price", "variableCost"],
)

INVOICE_SCHEMA = _object(
    {
        "vendorName": _string(),
        "invoiceDate": _string("YYYY-MM-DD"),
        "totalAmount": {"type": "number", "description": "Total including tax"},
        "description": _string(),
        "costType": {"type": "string", "enum": ["V", "F"]},
        "account": _string("Best matching account item"),
        "allocationDivision": _string(),
        "relatedCustomer": _string(),
        "project": _string(),
    },
    ["vendorName", "invoiceDate", "totalAmount", "description", "costType", "account"],
)

JOURNAL_SCHEMA = _object(
    {
        "account": _string(),
        "description": _string(),
        "debit": {"type": "number"},
        "credit": {"type": "number"},
    },
    ["account", "description", "debit", "credit"],
)

REPLY_EMAIL_SCHEMA = _object({"subject": _string(), "bodyText": _string()}, ["subject", "bodyText"])

LINE_ITEMS_SCHEMA = _object({"items": {"type": "array", "items": LINE_ITEM_SCHEMA}}, ["items"])

DRAFT_ESTIMATE_SCHEMA = _object(
    {
        "sourceSummary": _string(),
        "customerCandidates": {
            "type": "array",
            "items": _object(
                {
                    "company": _string(),
                    "person": _string(),
                    "email": _string(),
                    "tel": _string(),
                    "address": _string(),
                    "confidence": {"type": "number"},
                }
            ),
        },
        "subjectCandidates": {"type": "array", "items": _string()},
        "paymentTerms": _string(),
        "deliveryTerms": _string(),
        "deliveryMethod": _string(),
        "currency": _string("ISO 4217 code"),
        "taxInclusive": {"type": "boolean"},
        "dueDate": _string("YYYY-MM-DD"),
        "items": {"type": "array", "items": LINE_ITEM_SCHEMA},
        "notes": _string(),
    },
    ["customerCandidates", "subjectCandidates", "items", "currency"],
)

PROJECT_SCHEMA = _object(
    {
        "projectName": _string(),
        "customerName": _string(),
        "overview": _string(),
        "extracted_details": _string("Key requirements as bullet points"),
        "file_categorization": {
            "type": "array",
            "items": _object({"fileName": _string(), "category": _string()}, ["fileName", "category"]),
        },
    },
    ["projectName", "customerName", "overview", "extracted_details", "file_categorization"],
)

APPROVAL_DOCUMENT_SCHEMA = _object({"title": _string(), "details": _string()}, ["title", "details"])

ANALYSIS_FORMAT = """{
  "swot": "SWOT analysis as bullet points",
  "painPointsAndNeeds": "likely problems and needs as bullet points",
  "suggestedActions": "concrete print jobs or actions we can propose",
  "proposalEmail": {"subject": "...", "body": "... sign as [あなたの名前]"}
}"""

PROPOSAL_PACKAGE_FORMAT = """{
  "isSalesLead": true or false,
  "reason": "why",
  "proposal": {"coverTitle": "", "businessUnderstanding": "", "challenges": "", "proposal": "", "conclusion": ""} or null,
  "estimate": [{"division": "", "content": "", "quantity": 0, "unit": "", "unitPrice": 0, "price": 0, "cost": 0}] or null
}"""

MARKET_RESEARCH_FORMAT = """{
  "title": "", "summary": "", "trends": [""], "competitorAnalysis": "",
  "opportunities": [""], "threats": [""]
}"""

BUSINESS_CONSULTANT_PROMPT = (
    "You are an experienced management consultant advising staff of a Japanese print company. "
    "Use the internal data they share and current market information. Answer in Japanese."
)

BUG_REPORT_PROMPT = (
    "You take bug reports and improvement requests. Ask follow-up questions until you can answer "
    'with only this JSON: {"report_type": "bug" or "improvement", "summary": "...", '
    '"description": "steps, expected and actual behaviour"}. Answer in Japanese.'
)


class AIService:
    def __init__(self, client: Optional[AIClient] = None) -> None:
        self.client = client or AIClient()

    @property
    def settings(self):
        return self.client.settings

    # -- jobs and sales -------------------------------------------------

    def suggest_job_parameters(
        self, prompt: str, paper_types: Sequence[str], finishing_options: Sequence[str], cancel: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        text = (
            f"A customer of our print shop asks: \"{prompt}\".\n"
            f"Paper types: {', '.join(paper_types)}\n"
            f"Finishing options: {', '.join(finishing_options)}\n"
            "Suggest the job parameters. Write text fields in Japanese."
        )
        return self.client.generate_json(text, schema=SUGGEST_JOB_SCHEMA, schema_name="job", cancel=cancel)

    def analyze_company(self, customer: Dict[str, Any], cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Web-grounded company analysis; falls back to the raw text when it is not JSON."""
        text = (
            "Using web search, write a company analysis in Japanese as JSON in this format:\n"
            f"{ANALYSIS_FORMAT}\n\n"
            f"Company: {customer.get('customerName')}\n"
            f"Website: {customer.get('websiteUrl') or '情報なし'}\n"
            f"Business: {customer.get('companyContent') or '情報なし'}\n"
            f"Sales activity: {customer.get('infoSalesActivity') or '情報なし'}\n"
            f"Requirements: {customer.get('infoRequirements') or '情報なし'}"
        )
        response = self.client.generate(text, web_search=True, cancel=cancel)
        try:
            result = response.json_object()
        except AIResponseParseError as exc:
            logger.error("Company analysis was not JSON: %s", exc.raw_text)
            return {
                "swot": "JSON解析エラー",
                "painPointsAndNeeds": exc.raw_text,
                "suggestedActions": "",
                "proposalEmail": {"subject": "エラー", "body": "AIからの応答を解析できませんでした。"},
            }
        return {**result, "sources": response.sources}

    def investigate_lead_company(self, company_name: str, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        text = (
            f"Research the company \"{company_name}\": its business, recent news and reputation. "
            "Summarise briefly in Japanese."
        )
        response = self.client.generate(text, web_search=True, cancel=cancel)
        return {"summary": response.text, "sources": response.sources}

    def enrich_customer_data(self, customer_name: str, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Public company facts; fields the model could not find are left out."""
        text = (
            f"Using web search, find the following about the company \"{customer_name}\" and answer "
            "only with JSON. Use null for anything you cannot find: websiteUrl, companyContent, "
            "annualSales, employeesCount, address1, phoneNumber, representative."
        )
        parsed = self.client.generate(text, web_search=True, cancel=cancel).json_object()
        return {key: value for key, value in parsed.items() if value is not None}

    def generate_sales_email(self, customer: Dict[str, Any], sender_name: str, cancel: Optional[threading.Event] = None) -> Dict[str, str]:
        text = (
            f"Write a sales proposal email in Japanese to {customer.get('customerName')} from {sender_name}. "
            "Start with a line '件名: <subject>' followed by '本文: <body>'."
        )
        return split_email(self.client.generate(text, cancel=cancel).text)

    def generate_lead_reply_email(self, lead: Dict[str, Any], cancel: Optional[threading.Event] = None) -> Dict[str, str]:
        text = (
            "Write the first reply email in Japanese to this inquiry.\n"
            f"Company: {lead.get('company')}\n"
            f"Contact: {lead.get('name')}様\n"
            f"Inquiry: {lead.get('message') or '記載なし'}\n"
            "Sign as [あなたの名前]."
        )
        return self.client.generate_json(text, schema=REPLY_EMAIL_SCHEMA, schema_name="email", cancel=cancel)

    def analyze_lead_data(self, leads: Sequence[Dict[str, Any]], cancel: Optional[threading.Event] = None) -> str:
        sample = [
            {k: lead.get(k) for k in ("company", "status", "inquiryType", "message")} for lead in leads[:3]
        ]
        text = (
            f"Analyse these leads ({len(leads)} in total) and give one short sales insight in Japanese, "
            "for example which segment to approach.\n"
            f"Sample:\n{json.dumps(sample, ensure_ascii=False, indent=2)}"
        )
        return self.client.generate(text, cancel=cancel).text

    def create_lead_proposal_package(self, lead: Dict[str, Any], cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Decide whether a lead is a real opportunity and, if so, draft a proposal and estimate."""
        text = (
            "Decide whether this inquiry is a real business lead or spam/unrelated. Only for a real "
            "lead, research the company on the web and draft a proposal and estimate for our print and "
            f"logistics services. Answer in Japanese, only with JSON in this format:\n{PROPOSAL_PACKAGE_FORMAT}\n\n"
            f"Company: {lead.get('company')}\n"
            f"Contact: {lead.get('name')}\n"
            f"Inquiry: {lead.get('message') or '具体的な内容は記載されていません。'}"
        )
        response = self.client.generate(text, web_search=True, cancel=cancel)
        try:
            return response.json_object()
        except AIResponseParseError as exc:
            logger.error("Proposal package was not JSON: %s", exc.raw_text)
            return {
                "isSalesLead": False,
                "reason": f"AIからの応答を解析できませんでした。応答: {exc.raw_text}",
            }

    def get_dashboard_suggestion(self, jobs: Sequence[Dict[str, Any]], cancel: Optional[threading.Event] = None) -> str:
        recent = []
        for job in jobs[:5]:
            price = job.get("price") or 0
            cost = job.get("variableCost") or 0
            recent.append(
                {
                    "title": job.get("title"),
                    "price": price,
                    "variableCost": cost,
                    "margin": price - cost,
                    "marginRate": (price - cost) / price * 100 if price > 0 else 0,
                }
            )
        text = (
            "You are a management consultant for a print company. From these recent jobs, give one "
            "concrete, actionable improvement in Japanese, considering profitability, efficiency and "
            f"strategic value.\n{json.dumps(recent, ensure_ascii=False, indent=2)}"
        )
        return self.client.generate(text, cancel=cancel).text

    def generate_daily_report_summary(self, customer_name: str, activity: str, cancel: Optional[threading.Event] = None) -> str:
        text = (
            "Turn these keywords into the activity section of a daily sales report, in Japanese business style.\n"
            f"Visited: {customer_name}\nKeywords: {activity}"
        )
        return self.client.generate(text, cancel=cancel).text

    def generate_weekly_report_summary(self, keywords: str, cancel: Optional[threading.Event] = None) -> str:
        text = f"Turn these keywords into a weekly report in Japanese business style.\nKeywords: {keywords}"
        return self.client.generate(text, cancel=cancel).text

    # -- estimates and projects ----------------------------------------

    def parse_line_items(self, prompt: str, cancel: Optional[threading.Event] = None) -> List[Dict[str, Any]]:
        text = (
            "Extract estimate line items typical for a print company, with realistic unit prices, "
            f"from this text: \"{prompt}\""
        )
        parsed = self.client.generate_json(text, schema=LINE_ITEMS_SCHEMA, schema_name="line_items", cancel=cancel)
        return parsed.get("items") or [] if isinstance(parsed, dict) else parsed

    def create_draft_estimate(
        self, input_text: str, files: Iterable[Dict[str, Any]] = (), cancel: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """Draft an estimate from a customer request; gaps are filled with defaults and heuristics."""
        text = (
            "You are a veteran estimator at a Japanese print company. From the customer request and "
            "attachments, draft a detailed estimate: customer, subject candidates, due date, payment "
            "terms and line items with realistic prices. Split combined requests into separate lines. "
            "For warehousing, regular shipping or subscription work use an initial fee (unit 式) and a "
            "monthly fee (unit 月). Write text in Japanese.\n\n"
            f"Request:\n{input_text}"
        )
        draft = self.client.generate_object(
            text,
            schema=DRAFT_ESTIMATE_SCHEMA,
            schema_name="estimate_draft",
            attachments=_attachments(files),
            model=self.settings.ai_reasoning_model,
            cancel=cancel,
        )
        if not draft.get("items"):
            draft["items"] = rough_extract_lines(input_text)
        if not draft.get("customerCandidates"):
            draft["customerCandidates"] = rough_extract_customer(input_text)
        if not draft.get("subjectCandidates"):
            draft["subjectCandidates"] = [guess_subject(input_text)]
        draft["draftId"] = str(uuid.uuid4())
        for key, value in DRAFT_DEFAULTS.items():
            if not draft.get(key):
                draft[key] = value
        if draft.get("taxInclusive") is None:
            draft["taxInclusive"] = False
        if not draft.get("sourceSummary"):
            draft["sourceSummary"] = (input_text or "")[:240]
        return draft

    def create_project_from_inputs(
        self, input_text: str, files: Iterable[Dict[str, Any]] = (), cancel: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        attachments = _attachments(files)
        names = "\n".join(f"- {a.file_name}" for a in attachments) or "- none"
        text = (
            "You are a veteran project manager at a Japanese print company. From the request and "
            "attachments create a project: a name, the customer name, an overview, the key "
            "specifications (size, colour, quantity, deadline) as bullet points, and a category for "
            "each attached file (仕様書, デザイン案, 参考資料, その他). Write text in Japanese.\n\n"
            f"Request:\n{input_text}\n\nAttached files:\n{names}"
        )
        response = self.client.generate(
            text,
            schema=PROJECT_SCHEMA,
            schema_name="project",
            attachments=attachments,
            model=self.settings.ai_reasoning_model,
            cancel=cancel,
        )
        try:
            return response.json_object()
        except AIResponseParseError as exc:
            logger.error("Project creation response was not JSON: %s", exc.raw_text)
            raise AIResponseParseError(f"AIからの応答を解析できませんでした: {exc}", raw_text=exc.raw_text) from exc

    def generate_proposal_section(
        self,
        section_title: str,
        customer: Dict[str, Any],
        job: Optional[Dict[str, Any]] = None,
        estimate: Optional[Dict[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        job_info = (
            f"- Job: {job.get('title')}\n- Quantity: {job.get('quantity')}\n- Spec: {job.get('details')}"
            if job
            else "- なし"
        )
        estimate_info = (
            f"- Subject: {estimate.get('title')}\n- Total: {format_jpy(estimate.get('grandTotal') or 0)}"
            if estimate
            else "- なし"
        )
        text = (
            f"Write the body (no heading) of the \"{section_title}\" section of a sales proposal in Japanese.\n\n"
            f"Customer: {customer.get('customerName')}\n"
            f"Business: {customer.get('companyContent') or 'N/A'}\n\n"
            f"Related job:\n{job_info}\n\nRelated estimate:\n{estimate_info}"
        )
        return self.client.generate(text, model=self.settings.ai_reasoning_model, cancel=cancel).text

    # -- accounting and approvals ---------------------------------------

    def extract_invoice_details(
        self,
        data: bytes,
        mime_type: str,
        account_items: Sequence[Dict[str, Any]] = (),
        allocation_divisions: Sequence[Dict[str, Any]] = (),
        cancel: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """Read vendor, date, amount and a suggested account from an invoice image or PDF."""
        text = (
            "Extract the invoice details from this document.\n"
            f"Choose the account from: {', '.join(i.get('name', '') for i in account_items)}\n"
            f"Choose the allocation division from: {', '.join(d.get('name', '') for d in allocation_divisions)}"
        )
        return self.client.generate_json(
            text,
            schema=INVOICE_SCHEMA,
            schema_name="invoice",
            attachments=[Attachment(data=data, mime_type=mime_type, file_name="invoice")],
            model=self.settings.ai_vision_model,
            cancel=cancel,
        )

    def suggest_journal_entry(self, prompt: str, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        text = f"Turn this everyday transaction into an accounting journal entry (Japanese account names): \"{prompt}\""
        return self.client.generate_json(text, schema=JOURNAL_SCHEMA, schema_name="journal_entry", cancel=cancel)

    def parse_approval_document(self, data: bytes, mime_type: str, cancel: Optional[threading.Event] = None) -> Dict[str, str]:
        return self.client.generate_json(
            "Extract the subject and the full details of this approval request (稟議書).",
            schema=APPROVAL_DOCUMENT_SCHEMA,
            schema_name="approval_document",
            attachments=[Attachment(data=data, mime_type=mime_type, file_name="document")],
            model=self.settings.ai_vision_model,
            cancel=cancel,
        )

    def generate_closing_summary(
        self,
        period: str,
        current_jobs: Sequence[Dict[str, Any]],
        previous_jobs: Sequence[Dict[str, Any]],
        current_journal: Sequence[Dict[str, Any]],
        previous_journal: Sequence[Dict[str, Any]],
        cancel: Optional[threading.Event] = None,
    ) -> str:
        def figures(jobs, journal) -> str:
            sales = sum(j.get("price") or 0 for j in jobs)
            margin = sum((j.get("price") or 0) - (j.get("variableCost") or 0) for j in jobs)
            expenses = sum(e.get("debit") or 0 for e in journal)
            return (
                f"- Jobs: {len(jobs)}\n- Sales: {format_jpy(sales)}\n"
                f"- Marginal profit: {format_jpy(margin)}\n- Expenses: {format_jpy(expenses)}"
            )

        text = (
            f"You are an accounting analyst. Write a {period} closing summary in Japanese: KPIs compared "
            "with the previous period, notable changes and their causes, and brief advice.\n\n"
            f"Current period:\n{figures(current_jobs, current_journal)}\n\n"
            f"Previous period:\n{figures(previous_jobs, previous_journal)}"
        )
        return self.client.generate(text, model=self.settings.ai_reasoning_model, cancel=cancel).text

    def process_application_chat(
        self,
        history: Sequence[Dict[str, str]],
        application_codes: Sequence[Dict[str, Any]],
        users: Sequence[Dict[str, Any]],
        approval_routes: Sequence[Dict[str, Any]],
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """Next assistant turn: a follow-up question or the final application JSON."""
        conversation = "\n".join(f"{m['role']}: {m['content']}" for m in history)
        latest = history[-1]["content"] if history else ""
        codes = [{"id": c.get("id"), "name": c.get("name"), "code": c.get("code")} for c in application_codes]
        people = [{"id": u.get("id"), "name": u.get("name")} for u in users]
        routes = [{"id": r.get("id"), "name": r.get("name")} for r in approval_routes]
        text = (
            "You help employees file internal applications. Ask for missing information in Japanese, "
            'or, once complete, answer only with {"applicationCodeId": "", "formData": {}, "approvalRouteId": ""}.\n\n'
            f"Conversation:\n{conversation}\n\n"
            f"Application types: {json.dumps(codes, ensure_ascii=False)}\n"
            f"Users: {json.dumps(people, ensure_ascii=False)}\n"
            f"Approval routes: {json.dumps(routes, ensure_ascii=False)}\n\n"
            f"Latest input: \"{latest}\""
        )
        return self.client.generate(text, cancel=cancel).text.strip()

    # -- research and chat ---------------------------------------------

    def generate_market_research_report(self, topic: str, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        text = (
            f"Using web search, write a market research report in Japanese on \"{topic}\". "
            f"Answer only with JSON in this format:\n{MARKET_RESEARCH_FORMAT}"
        )
        response = self.client.generate(text, web_search=True, cancel=cancel)
        return {**response.json_object(), "sources": response.sources}

    def start_business_consultant_chat(self) -> ChatSession:
        return self.client.start_chat(BUSINESS_CONSULTANT_PROMPT, web_search=True)

    def start_bug_report_chat(self) -> ChatSession:
        return self.client.start_chat(BUG_REPORT_PROMPT)
