"""
Data access for printshop-erp.

``DataService`` issues create/read/update/delete calls against the relational
store and the file buckets, translating between camelCase application records
and snake_case rows through the mappings in :mod:`printshop_erp.mapper`.
Nothing is cached between calls; every method opens its own session.

Multi-step operations (job numbering, approval advancement) read and then
write without a concurrency token.  Concurrent callers can race; see
DESIGN.md.
"""

from __future__ import annotations

import datetime as _dt
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from . import models
from .config import INBOX_BUCKET, PROJECT_FILES_BUCKET, get_settings
from .errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    ValidationError,
    require_fields,
)
from .mapper import EntityMapping, get_mapping, row_to_dict
from .storage import FileStorage, generate_path
from .workflow import ApplicationStatus, approve, reject, start_application

logger = logging.getLogger(__name__)

INVOICE_STATUS_ORDER = ("uninvoiced", "invoiced", "paid")
INVOICE_TAX_RATE = 0.1

# Fields moved only by their lifecycle operations: submit/approve/reject for
# applications, review and approval for inbox items.
LIFECYCLE_FIELDS = {
    "applications": ("status", "currentLevel", "approverId", "approvedAt", "rejectedAt", "rejectionReason"),
    "inbox_items": ("status",),
}


def make_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(database_url: Optional[str] = None) -> Callable[[], Session]:
    engine = make_engine(database_url or get_settings().database_url)
    models.Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def first_job_number(today: Optional[_dt.date] = None) -> int:
    today = today or _dt.date.today()
    return today.year * 10000 + 1


class DataService:
    def __init__(self, session_factory: Callable[[], Session], storage: Optional[FileStorage] = None) -> None:
        self._session_factory = session_factory
        self.storage = storage

    @classmethod
    def from_url(cls, database_url: Optional[str] = None, storage: Optional[FileStorage] = None) -> "DataService":
        return cls(create_session_factory(database_url), storage)

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("%s failed: %s", action, exc)
            raise StoreError.from_exception(action, exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _public_url(self, bucket: str, path: str) -> str:
        if self.storage is None:
            return path
        return self.storage.public_url(bucket, path)

    def _record(self, mapping: EntityMapping, obj: Any) -> Dict[str, Any]:
        return mapping.from_store(row_to_dict(obj), self._public_url)

    def _load(self, session: Session, mapping: EntityMapping, record_id: Any) -> Any:
        obj = session.get(mapping.model, record_id)
        if obj is None:
            raise NotFoundError(f"{mapping.kind} {record_id} not found")
        return obj

    def _query(self, session: Session, mapping: EntityMapping):
        query = session.query(mapping.model)
        for column, value in mapping.filters.items():
            query = query.filter(getattr(mapping.model, column) == value)
        if mapping.order_by:
            column, descending = mapping.order_by
            attr = getattr(mapping.model, column)
            query = query.order_by(attr.desc() if descending else attr.asc())
        return query

    @staticmethod
    def _apply(obj: Any, row: Dict[str, Any]) -> None:
        for column, value in row.items():
            setattr(obj, column, value)

    # ------------------------------------------------------------------
    # generic CRUD
    # ------------------------------------------------------------------

    def list(self, kind: str) -> List[Dict[str, Any]]:
        mapping = get_mapping(kind)
        with self._session(f"Loading {kind}") as session:
            return [self._record(mapping, obj) for obj in self._query(session, mapping).all()]

    def get(self, kind: str, record_id: Any) -> Dict[str, Any]:
        mapping = get_mapping(kind)
        with self._session(f"Loading {kind} {record_id}") as session:
            return self._record(mapping, self._load(session, mapping, record_id))

    @staticmethod
    def _check_generic_write(kind: str, record: Dict[str, Any], inserting: bool) -> None:
        """Refuse generic writes that would skip a lifecycle operation."""
        if kind == "applications" and inserting:
            raise ValidationError(
                "Applications are created by submitting them on an approval route.",
                fields={"approvalRouteId": "Submit the application instead."},
            )
        locked = [name for name in LIFECYCLE_FIELDS.get(kind, ()) if name in record]
        if locked:
            raise ValidationError(
                f"{', '.join(locked)} cannot be set directly on {kind}.",
                fields={name: "Changed only by its workflow action." for name in locked},
            )

    def _prepared(self, kind: str, obj: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply per-kind rules to a write; ``obj`` is the current row, or None on insert."""
        if kind == "jobs":
            return self._checked_job_patch(row_to_dict(obj) if obj is not None else {}, patch)
        if kind == "estimates" and obj is not None and ("items" in patch or "taxInclusive" in patch):
            # totals always follow from both items and tax mode
            return {"items": obj.items or [], "taxInclusive": obj.tax_inclusive, **patch}
        return patch

    def create(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        self._check_generic_write(kind, record, inserting=True)
        return self._create(kind, record)

    def _create(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        mapping = get_mapping(kind)
        with self._session(f"Creating {kind}") as session:
            row = mapping.writable(mapping.to_store(self._prepared(kind, None, record)))
            obj = mapping.model(**row)
            session.add(obj)
            session.flush()
            return self._record(mapping, obj)

    def update(self, kind: str, record_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        self._check_generic_write(kind, patch, inserting=False)
        return self._update(kind, record_id, patch)

    def _update(self, kind: str, record_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        mapping = get_mapping(kind)
        with self._session(f"Updating {kind} {record_id}") as session:
            obj = self._load(session, mapping, record_id)
            self._apply(obj, mapping.writable(mapping.to_store(self._prepared(kind, obj, patch))))
            session.flush()
            return self._record(mapping, obj)

    def delete(self, kind: str, record_id: Any) -> None:
        mapping = get_mapping(kind)
        with self._session(f"Deleting {kind} {record_id}") as session:
            session.delete(self._load(session, mapping, record_id))

    def upsert(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Update the row named by ``record["id"]`` if it exists, insert otherwise.

        The same rules as :meth:`create` and :meth:`update` apply.
        """
        mapping = get_mapping(kind)
        record_id = record.get("id")
        with self._session(f"Saving {kind}") as session:
            obj = session.get(mapping.model, record_id) if record_id else None
            self._check_generic_write(kind, record, inserting=obj is None)
            row = mapping.writable(mapping.to_store(self._prepared(kind, obj, record)))
            if obj is None:
                obj = mapping.model(**row)
                session.add(obj)
            else:
                self._apply(obj, row)
            session.flush()
            return self._record(mapping, obj)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def _profile(self, session: Session, user: models.User) -> Dict[str, Any]:
        record = self._record(get_mapping("users"), user)
        employee = (
            session.query(models.Employee)
            .filter(models.Employee.user_id == user.id, models.Employee.is_active.is_(True))
            .first()
        )
        record["department"] = employee.department if employee else None
        record["title"] = employee.title if employee else None
        return record

    def list_users(self) -> List[Dict[str, Any]]:
        with self._session("Loading users") as session:
            users = session.query(models.User).order_by(models.User.name.asc()).all()
            return [self._profile(session, user) for user in users]

    def resolve_user_session(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        """Return the profile for an authenticated identity, provisioning it on first sign-in.

        ``identity`` carries ``id`` plus optional ``email`` and ``fullName``.
        A new profile gets role ``user`` and an employee row.
        """
        user_id = identity.get("id")
        if not user_id:
            raise ValidationError("Session has no user id.", fields={"id": "This field is required."})
        with self._session("Resolving user profile") as session:
            user = session.get(models.User, user_id)
            if user is None:
                email = identity.get("email")
                name = identity.get("fullName") or (email.split("@")[0] if email else None) or "New User"
                user = models.User(
                    id=user_id, name=name, email=email, role="user", can_use_anything_analysis=True
                )
                session.add(user)
                session.add(models.Employee(user_id=user_id, name=name))
                session.flush()
                logger.info("Provisioned profile for new user %s", user_id)
            return self._profile(session, user)

    # ------------------------------------------------------------------
    # jobs and invoicing
    # ------------------------------------------------------------------

    def add_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a job with the next sequential job number."""
        require_fields(job, "clientName", "title")
        mapping = get_mapping("jobs")
        with self._session("Creating job") as session:
            current_max = session.query(func.max(models.Job.job_number)).scalar()
            job_number = current_max + 1 if current_max else first_job_number()
            row = mapping.writable(mapping.to_store(job))
            row["job_number"] = job_number
            obj = models.Job(**row)
            session.add(obj)
            session.flush()
            return self._record(mapping, obj)

    @staticmethod
    def _checked_job_patch(current: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        new_status = patch.get("invoiceStatus")
        if new_status is None:
            return patch
        old_status = current.get("invoice_status") or INVOICE_STATUS_ORDER[0]
        if new_status not in INVOICE_STATUS_ORDER:
            raise ValidationError(
                f"Unknown invoice status: {new_status}", fields={"invoiceStatus": "Unknown status."}
            )
        old_index = INVOICE_STATUS_ORDER.index(old_status)
        new_index = INVOICE_STATUS_ORDER.index(new_status)
        if new_index == old_index:
            return patch
        if new_index != old_index + 1:
            raise ValidationError(
                f"Invoice status cannot move from {old_status} to {new_status}.",
                fields={"invoiceStatus": "Invalid transition."},
            )
        patch = dict(patch)
        now = _dt.datetime.utcnow()
        if new_status == "invoiced":
            patch.setdefault("invoicedAt", now)
        elif new_status == "paid":
            patch.setdefault("paidAt", now)
        return patch

    def set_job_invoice_status(self, job_id: str, status: str) -> Dict[str, Any]:
        return self.update("jobs", job_id, {"invoiceStatus": status})

    def set_job_ready_to_invoice(self, job_id: str, value: bool) -> Dict[str, Any]:
        return self.update("jobs", job_id, {"readyToInvoice": bool(value)})

    def list_invoices(self) -> List[Dict[str, Any]]:
        invoices = get_mapping("invoices")
        items = get_mapping("invoice_items")
        with self._session("Loading invoices") as session:
            result = []
            for invoice in self._query(session, invoices).all():
                record = self._record(invoices, invoice)
                record["items"] = [self._record(items, item) for item in invoice.items]
                result.append(record)
            return result

    def create_invoice_from_jobs(self, job_ids: Iterable[str]) -> Dict[str, Any]:
        """Issue one invoice covering ``job_ids`` and mark those jobs invoiced."""
        job_ids = list(job_ids)
        with self._session("Creating invoice") as session:
            jobs = session.query(models.Job).filter(models.Job.id.in_(job_ids)).all() if job_ids else []
            if not jobs:
                raise ValidationError("No jobs found.", fields={"jobIds": "Select at least one job."})
            not_open = {
                job.id: "Already invoiced."
                for job in jobs
                if (job.invoice_status or INVOICE_STATUS_ORDER[0]) != INVOICE_STATUS_ORDER[0]
            }
            if not_open:
                raise ValidationError("Only uninvoiced jobs can be invoiced.", fields=not_open)
            jobs.sort(key=lambda job: job_ids.index(job.id))
            subtotal = sum(float(job.price or 0) for job in jobs)
            tax = subtotal * INVOICE_TAX_RATE
            invoice = models.Invoice(
                invoice_no=f"INV-{int(time.time() * 1000)}",
                invoice_date=_dt.date.today().isoformat(),
                customer_name=jobs[0].client_name,
                subtotal_amount=subtotal,
                tax_amount=tax,
                total_amount=subtotal + tax,
                status="issued",
            )
            for index, job in enumerate(jobs):
                invoice.items.append(
                    models.InvoiceItem(
                        job_id=job.id,
                        description=job.title,
                        quantity=1,
                        unit="式",
                        unit_price=job.price,
                        line_total=job.price,
                        sort_index=index,
                    )
                )
            session.add(invoice)
            session.flush()
            now = _dt.datetime.utcnow()
            for job in jobs:
                job.invoice_id = invoice.id
                job.invoice_status = "invoiced"
                job.invoiced_at = now
            record = self._record(get_mapping("invoices"), invoice)
            record["items"] = [self._record(get_mapping("invoice_items"), item) for item in invoice.items]
            return record

    # ------------------------------------------------------------------
    # estimates
    # ------------------------------------------------------------------

    def add_estimate(self, estimate: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(estimate, "customerName", "title")
        mapping = get_mapping("estimates")
        with self._session("Creating estimate") as session:
            current_max = session.query(func.max(models.Estimate.estimate_number)).scalar()
            row = mapping.writable(mapping.to_store({"items": [], **estimate}))
            row["estimate_number"] = (current_max or 0) + 1
            obj = models.Estimate(**row)
            session.add(obj)
            session.flush()
            return self._record(mapping, obj)

    def _merge_estimate_json(self, estimate_id: str, column: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        mapping = get_mapping("estimates")
        with self._session(f"Updating estimate {column}") as session:
            obj = self._load(session, mapping, estimate_id)
            setattr(obj, column, {**(getattr(obj, column) or {}), **patch})
            session.flush()
            return self._record(mapping, obj)

    def save_postal(self, estimate_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._merge_estimate_json(estimate_id, "postal", patch)

    def save_tracking(self, estimate_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._merge_estimate_json(estimate_id, "tracking", patch)

    # ------------------------------------------------------------------
    # approvals
    # ------------------------------------------------------------------

    def _route_record(self, session: Session, route_id: Any) -> Optional[Dict[str, Any]]:
        route = session.get(models.ApprovalRoute, route_id) if route_id else None
        return self._record(get_mapping("approval_routes"), route) if route else None

    def list_applications(self, user: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Applications the user submitted or must currently approve, with details."""
        if not user or not user.get("id"):
            return []
        mapping = get_mapping("applications")
        with self._session("Loading applications") as session:
            apps = (
                self._query(session, mapping)
                .filter(
                    or_(
                        models.Application.applicant_id == user["id"],
                        models.Application.approver_id == user["id"],
                    )
                )
                .all()
            )
            result = []
            for app in apps:
                record = self._record(mapping, app)
                applicant = session.get(models.User, app.applicant_id)
                code = session.get(models.ApplicationCode, app.application_code_id) if app.application_code_id else None
                record["applicant"] = {"name": applicant.name} if applicant else None
                record["applicationCode"] = {"name": code.name} if code else None
                record["approvalRoute"] = self._route_record(session, app.approval_route_id)
                result.append(record)
            return result

    def submit_application(self, app_data: Dict[str, Any], applicant_id: str) -> Dict[str, Any]:
        """Create an application at level 1 of its route.

        The route is validated before anything is written, so an empty route
        leaves no record behind.
        """
        require_fields(app_data, "approvalRouteId")
        mapping = get_mapping("applications")
        with self._session("Submitting application") as session:
            route = self._route_record(session, app_data["approvalRouteId"])
            initial = start_application(route)
            record = {
                "applicantId": applicant_id,
                "applicationCodeId": app_data.get("applicationCodeId"),
                "formData": app_data.get("formData"),
                "approvalRouteId": app_data["approvalRouteId"],
                **initial,
            }
            obj = models.Application(**mapping.writable(mapping.to_store(record)))
            session.add(obj)
            session.flush()
            return self._record(mapping, obj)

    def _load_application(self, session: Session, application_id: str, actor_id: Optional[str]):
        mapping = get_mapping("applications")
        obj = self._load(session, mapping, application_id)
        if obj.status != ApplicationStatus.PENDING_APPROVAL.value:
            raise InvalidTransitionError(f"Application is already {obj.status}.")
        if actor_id is not None and obj.approver_id != actor_id:
            raise PermissionDeniedError("Only the current approver can act on this application.")
        return mapping, obj

    def approve_application(self, application_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        with self._session(f"Approving application {application_id}") as session:
            mapping, obj = self._load_application(session, application_id, actor_id)
            current = self._record(mapping, obj)
            patch = approve(current, self._route_record(session, obj.approval_route_id))
            self._apply(obj, mapping.to_store(patch))
            session.flush()
            return self._record(mapping, obj)

    def reject_application(self, application_id: str, reason: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        with self._session(f"Rejecting application {application_id}") as session:
            mapping, obj = self._load_application(session, application_id, actor_id)
            patch = reject(self._record(mapping, obj), reason)
            self._apply(obj, mapping.to_store(patch))
            session.flush()
            return self._record(mapping, obj)

    # ------------------------------------------------------------------
    # files, inbox, projects
    # ------------------------------------------------------------------

    def _require_storage(self) -> FileStorage:
        if self.storage is None:
            self.storage = FileStorage()
        return self.storage

    def upload_file(self, bucket: str, file_name: str, content: bytes, mime_type: Optional[str] = None) -> str:
        path = generate_path(file_name)
        return self._require_storage().upload(bucket, path, content, mime_type or "application/octet-stream")

    def discard_files(self, bucket: str, paths: Iterable[str]) -> None:
        """Remove uploads whose row was never written; a failure here is only logged."""
        paths = [path for path in paths if path]
        if not paths:
            return
        try:
            self._require_storage().remove(bucket, paths)
        except StoreError as exc:
            logger.error("Could not remove orphaned files %s from %s: %s", paths, bucket, exc)

    def add_inbox_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(item, "fileName", "filePath")
        return self._create("inbox_items", item)

    def update_inbox_item(self, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        allowed = {k: v for k, v in updates.items() if k in ("extractedData", "status", "errorMessage")}
        return self._update("inbox_items", item_id, allowed)

    def delete_inbox_item(self, item: Dict[str, Any]) -> None:
        """Remove the stored file, then the row."""
        self._require_storage().remove(INBOX_BUCKET, [item.get("filePath")])
        self.delete("inbox_items", item["id"])

    def list_projects(self) -> List[Dict[str, Any]]:
        with self._session("Loading projects") as session:
            projects = self._query(session, get_mapping("projects")).all()
            return [self._project_record(project) for project in projects]

    def _project_record(self, project: models.Project) -> Dict[str, Any]:
        record = self._record(get_mapping("projects"), project)
        attachments = get_mapping("project_attachments")
        record["attachments"] = [self._record(attachments, att) for att in project.attachments]
        return record

    def add_project(self, project: Dict[str, Any], files: Iterable[Dict[str, Any]] = ()) -> Dict[str, Any]:
        """Insert a project and upload its files to the ``project_files`` bucket.

        Each file is a dict with ``fileName``, ``content``, ``mimeType`` and
        ``category``.
        """
        require_fields(project, "projectName")
        uploaded = []
        mapping = get_mapping("projects")
        try:
            for file in files:
                path = self.upload_file(PROJECT_FILES_BUCKET, file["fileName"], file["content"], file.get("mimeType"))
                uploaded.append((file, path))
            with self._session("Creating project") as session:
                obj = models.Project(**mapping.writable(mapping.to_store(project)))
                for file, path in uploaded:
                    obj.attachments.append(
                        models.ProjectAttachment(
                            file_name=file["fileName"],
                            file_path=path,
                            mime_type=file.get("mimeType"),
                            category=file.get("category"),
                        )
                    )
                session.add(obj)
                session.flush()
                return self._project_record(obj)
        except Exception:
            self.discard_files(PROJECT_FILES_BUCKET, [path for _, path in uploaded])
            raise

    # ------------------------------------------------------------------
    # accounting and master data
    # ------------------------------------------------------------------

    def add_journal_entry(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(entry, "account")
        return self.create("journal_entries", {"date": _dt.datetime.utcnow(), **entry})

    def list_active_account_items(self) -> List[Dict[str, Any]]:
        return [item for item in self.list("account_items") if item.get("isActive")]

    def deactivate_account_item(self, item_id: str) -> Dict[str, Any]:
        return self.update("account_items", item_id, {"isActive": False})

    def list_payment_recipients(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        mapping = get_mapping("payment_recipients")
        with self._session("Loading payment recipients") as session:
            q = self._query(session, mapping)
            if query:
                q = q.filter(models.PaymentRecipient.company_name.ilike(f"%{query}%"))
            return [self._record(mapping, obj) for obj in q.all()]

    def add_bug_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(report, "reporterName", "reportType", "summary")
        return self.create("bug_reports", {**report, "status": "Open"})

    def list_analysis_history(self, user_id: str) -> List[Dict[str, Any]]:
        mapping = get_mapping("analysis_history")
        with self._session("Loading analysis history") as session:
            q = self._query(session, mapping).filter(models.AnalysisHistory.user_id == user_id)
            return [self._record(mapping, obj) for obj in q.all()]

    def add_analysis_history(self, history: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(history, "userId")
        return self.create("analysis_history", history)
