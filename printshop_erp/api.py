"""
HTTP API for printshop-erp.

Authentication happens upstream: the proxy in front of this app passes the
signed-in identity in ``X-User-Id``, ``X-User-Email`` and ``X-User-Name``.
On first contact a profile is provisioned for that identity.

Application errors are turned into JSON responses in one place
(``error_response``).  Connectivity failures get a "check your network"
message rather than the raw driver text.

To run locally::

    uvicorn printshop_erp.api:app --reload
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Body, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .ai_service import AIService
from .config import get_settings
from .data_service import DataService
from .errors import (
    NETWORK_MESSAGE,
    AICancelledError,
    AIDisabledError,
    AIError,
    AIResponseParseError,
    AIUnavailableError,
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    PrintshopError,
    StoreError,
    ValidationError,
    WorkflowConfigurationError,
    is_unavailable_error,
)
from .estimates import render_postal_label_svg
from .inbox import InboxProcessor
from .state import SLICES, AppState
from .storage import FileStorage

logger = logging.getLogger(__name__)

app = FastAPI(title="printshop-erp")

# Allow CORS during development; in production restrict origins appropriately
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_data_service() -> DataService:
    return DataService.from_url(get_settings().database_url, FileStorage())


@lru_cache(maxsize=1)
def get_ai_service() -> AIService:
    return AIService()


def get_inbox(
    data: DataService = Depends(get_data_service), ai: AIService = Depends(get_ai_service)
) -> InboxProcessor:
    return InboxProcessor(data, ai)


def current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not signed in")
    return data.resolve_user_session({"id": x_user_id, "email": x_user_email, "fullName": x_user_name})


def error_response(exc: PrintshopError) -> Tuple[int, Dict[str, Any]]:
    """Status code and JSON body for an application error."""
    if isinstance(exc, StoreError):
        if exc.unavailable or is_unavailable_error(exc):
            return 503, {"detail": NETWORK_MESSAGE}
        return 500, {"detail": str(exc)}
    if isinstance(exc, WorkflowConfigurationError):
        return 500, {"detail": str(exc), "hint": "Ask an administrator to check the approval route settings."}
    if isinstance(exc, ConfigurationError):
        return 500, {"detail": str(exc), "hint": "Check the server environment settings."}
    if isinstance(exc, ValidationError):
        return 422, {"detail": exc.message, "fields": exc.fields}
    if isinstance(exc, NotFoundError):
        return 404, {"detail": str(exc)}
    if isinstance(exc, PermissionDeniedError):
        return 403, {"detail": str(exc)}
    if isinstance(exc, (InvalidTransitionError, AICancelledError)):
        return 409, {"detail": str(exc)}
    if isinstance(exc, (AIDisabledError, AIUnavailableError)):
        return 503, {"detail": str(exc)}
    if isinstance(exc, AIResponseParseError):
        return 502, {"detail": str(exc)}
    if isinstance(exc, AIError):
        return 502, {"detail": str(exc)}
    return 500, {"detail": str(exc)}


@app.exception_handler(PrintshopError)
async def handle_printshop_error(request: Request, exc: PrintshopError) -> JSONResponse:
    status_code, body = error_response(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(body, status_code=status_code)


class InvoiceStatusBody(BaseModel):
    status: str


class ReadyToInvoiceBody(BaseModel):
    value: bool


class InvoiceFromJobsBody(BaseModel):
    jobIds: List[str]


class RejectBody(BaseModel):
    reason: str = ""


class ReviewBody(BaseModel):
    extractedData: Dict[str, Any]


# ---------------------------------------------------------------------------
# session and state
# ---------------------------------------------------------------------------


@app.get("/session")
def get_session(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    return user


@app.get("/state/reload")
def reload_state(
    user: Dict[str, Any] = Depends(current_user), data: DataService = Depends(get_data_service)
) -> Dict[str, Any]:
    state = AppState(data)
    if not state.reload_all(user):
        return {"ok": False, "error": state.error}
    return {"ok": True, "error": None, "counts": {kind: len(state.get(kind)) for kind in SLICES}}


# ---------------------------------------------------------------------------
# jobs, invoices, estimates
# ---------------------------------------------------------------------------


@app.post("/jobs", status_code=201)
def create_job(
    job: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.add_job({**job, "userId": user["id"]})


@app.post("/jobs/{job_id}/invoice-status")
def set_invoice_status(
    job_id: str,
    body: InvoiceStatusBody,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.set_job_invoice_status(job_id, body.status)


@app.post("/jobs/{job_id}/ready-to-invoice")
def set_ready_to_invoice(
    job_id: str,
    body: ReadyToInvoiceBody,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.set_job_ready_to_invoice(job_id, body.value)


@app.post("/invoices/from-jobs", status_code=201)
def create_invoice(
    body: InvoiceFromJobsBody,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.create_invoice_from_jobs(body.jobIds)


@app.post("/estimates", status_code=201)
def create_estimate(
    estimate: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.add_estimate({**estimate, "userId": user["id"]})


@app.get("/estimates/{estimate_id}/postal-label.svg")
def postal_label(
    estimate_id: str,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Response:
    estimate = data.get("estimates", estimate_id)
    postal = estimate.get("postal") or {}
    svg = render_postal_label_svg(postal.get("toName") or estimate["customerName"], postal.get("toCompany"))
    return Response(content=svg, media_type="image/svg+xml")


@app.post("/account_items/{item_id}/deactivate")
def deactivate_account_item(
    item_id: str,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.deactivate_account_item(item_id)


# ---------------------------------------------------------------------------
# approvals
# ---------------------------------------------------------------------------


@app.post("/applications", status_code=201)
def submit_application(
    application: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.submit_application(application, user["id"])


@app.post("/applications/{application_id}/approve")
def approve_application(
    application_id: str,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.approve_application(application_id, actor_id=user["id"])


@app.post("/applications/{application_id}/reject")
def reject_application(
    application_id: str,
    body: RejectBody,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    if not body.reason.strip():
        raise ValidationError("A rejection reason is required.", fields={"reason": "This field is required."})
    return data.reject_application(application_id, body.reason, actor_id=user["id"])


# ---------------------------------------------------------------------------
# inbox
# ---------------------------------------------------------------------------


@app.get("/inbox")
def list_inbox(
    user: Dict[str, Any] = Depends(current_user), data: DataService = Depends(get_data_service)
) -> List[Dict[str, Any]]:
    return data.list("inbox_items")


@app.post("/inbox", status_code=201)
def upload_to_inbox(
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(current_user),
    inbox: InboxProcessor = Depends(get_inbox),
) -> Dict[str, Any]:
    content = file.file.read()
    return inbox.ingest(file.filename or "upload", content, file.content_type or "application/octet-stream")


@app.patch("/inbox/{item_id}")
def review_inbox_item(
    item_id: str,
    body: ReviewBody,
    user: Dict[str, Any] = Depends(current_user),
    inbox: InboxProcessor = Depends(get_inbox),
) -> Dict[str, Any]:
    return inbox.save_review(item_id, body.extractedData)


@app.post("/inbox/{item_id}/approve")
def approve_inbox_item(
    item_id: str,
    user: Dict[str, Any] = Depends(current_user),
    inbox: InboxProcessor = Depends(get_inbox),
) -> Dict[str, Any]:
    return inbox.approve(item_id)


@app.delete("/inbox/{item_id}", status_code=204)
def delete_inbox_item(
    item_id: str,
    user: Dict[str, Any] = Depends(current_user),
    inbox: InboxProcessor = Depends(get_inbox),
) -> Response:
    inbox.delete(item_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# AI
# ---------------------------------------------------------------------------


@app.post("/ai/company-analysis/{customer_id}")
def analyze_customer(
    customer_id: str,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
    ai: AIService = Depends(get_ai_service),
) -> Dict[str, Any]:
    """Run the web-grounded company analysis and store it on the customer."""
    customer = data.get("customers", customer_id)
    analysis = ai.analyze_company(customer)
    data.update("customers", customer_id, {"aiAnalysis": analysis})
    return analysis


# ---------------------------------------------------------------------------
# generic entity routes; keep these last so the specific routes above win
# ---------------------------------------------------------------------------


@app.get("/{kind}")
def list_records(
    kind: str,
    q: Optional[str] = None,
    active: bool = False,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> List[Dict[str, Any]]:
    if kind == "invoices":
        return data.list_invoices()
    if kind == "projects":
        return data.list_projects()
    if kind == "users":
        return data.list_users()
    if kind == "applications":
        return data.list_applications(user)
    if kind == "analysis_history":
        return data.list_analysis_history(user["id"])
    if kind == "payment_recipients":
        return data.list_payment_recipients(q)
    if kind == "account_items" and active:
        return data.list_active_account_items()
    return data.list(kind)


@app.get("/{kind}/{record_id}")
def get_record(
    kind: str,
    record_id: str,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.get(kind, record_id)


@app.post("/{kind}", status_code=201)
def create_record(
    kind: str,
    record: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    if kind == "bug_reports":
        return data.add_bug_report(record)
    if kind == "journal_entries":
        return data.add_journal_entry(record)
    if kind == "analysis_history":
        return data.add_analysis_history({**record, "userId": user["id"]})
    return data.create(kind, record)


@app.put("/{kind}")
def upsert_record(
    kind: str,
    record: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.upsert(kind, record)


@app.patch("/{kind}/{record_id}")
def update_record(
    kind: str,
    record_id: str,
    patch: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Dict[str, Any]:
    return data.update(kind, record_id, patch)


@app.delete("/{kind}/{record_id}", status_code=204)
def delete_record(
    kind: str,
    record_id: str,
    user: Dict[str, Any] = Depends(current_user),
    data: DataService = Depends(get_data_service),
) -> Response:
    data.delete(kind, record_id)
    return Response(status_code=204)
