"""
Database models for printshop-erp.

These SQLAlchemy models define the persistence schema (snake_case columns) for
jobs, sales, purchasing, accounting, approvals and the OCR inbox.  Migrations
are intentionally omitted; the schema can be initialised via SQLAlchemy's
metadata create functions.  Nested documents (estimate line items, extracted
invoice data, approval route steps, ...) live in JSON columns.
"""

import datetime as _dt
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _id_column():
    return Column(String(36), primary_key=True, default=_uuid)


def _created_at():
    return Column(DateTime, default=_dt.datetime.utcnow, nullable=False)


def _updated_at():
    return Column(DateTime, default=_dt.datetime.utcnow, onupdate=_dt.datetime.utcnow)


class User(Base):
    """Application profile for an authenticated identity."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")  # user, admin
    can_use_anything_analysis = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()


class Employee(Base):
    __tablename__ = "employees"

    id = _id_column()
    user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String, nullable=False)
    department = Column(String, nullable=True)
    title = Column(String, nullable=True)
    hire_date = Column(String(10), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()


class Job(Base):
    """A print/manufacturing job.  ``job_number`` is year-prefixed (YYYY0001)."""

    __tablename__ = "jobs"

    id = _id_column()
    job_number = Column(Integer, nullable=False, index=True)
    client_name = Column(String, nullable=False)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, in_progress, completed, cancelled
    due_date = Column(String(10), nullable=True)
    quantity = Column(Integer, nullable=True)
    paper_type = Column(String, nullable=True)
    finishing = Column(String, nullable=True)
    details = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0)
    variable_cost = Column(Float, nullable=False, default=0)
    invoice_status = Column(String, nullable=False, default="uninvoiced")  # uninvoiced, invoiced, paid
    invoiced_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    ready_to_invoice = Column(Boolean, nullable=False, default=False)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    manufacturing_status = Column(String, nullable=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    project_name = Column(String, nullable=True)
    user_id = Column(String(64), nullable=True)
    created_at = _created_at()

    def __repr__(self) -> str:
        return f"<Job id={self.id} number={self.job_number} client={self.client_name}>"


class Customer(Base):
    __tablename__ = "customers"

    id = _id_column()
    customer_code = Column(String, nullable=True)
    customer_name = Column(String, nullable=False)
    customer_name_kana = Column(String, nullable=True)
    name2 = Column(String, nullable=True)
    representative = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    fax = Column(String, nullable=True)
    post_no = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    address_1 = Column(String, nullable=True)
    address_2 = Column(String, nullable=True)
    website_url = Column(String, nullable=True)
    company_content = Column(Text, nullable=True)
    annual_sales = Column(String, nullable=True)
    employees_count = Column(String, nullable=True)
    foundation_date = Column(String, nullable=True)
    capital = Column(String, nullable=True)
    customer_rank = Column(String, nullable=True)
    customer_division = Column(String, nullable=True)
    sales_type = Column(String, nullable=True)
    credit_limit = Column(String, nullable=True)
    closing_day = Column(String, nullable=True)
    pay_day = Column(String, nullable=True)
    pay_money = Column(String, nullable=True)
    monthly_plan = Column(String, nullable=True)
    recovery_method = Column(String, nullable=True)
    bank_name = Column(String, nullable=True)
    branch_name = Column(String, nullable=True)
    account_no = Column(String, nullable=True)
    sales_user_code = Column(String, nullable=True)
    start_date = Column(String, nullable=True)
    end_date = Column(String, nullable=True)
    drawing_date = Column(String, nullable=True)
    sales_goal = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    info_sales_activity = Column(Text, nullable=True)
    info_requirements = Column(Text, nullable=True)
    info_history = Column(Text, nullable=True)
    info_sales_ideas = Column(Text, nullable=True)
    customer_contact_info = Column(Text, nullable=True)
    ai_analysis = Column(JSON, nullable=True)
    user_id = Column(String(64), nullable=True)
    created_at = _created_at()


class Lead(Base):
    __tablename__ = "leads"

    id = _id_column()
    status = Column(String, nullable=False, default="new")  # new, contacted, qualified, lost, converted
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    company = Column(String, nullable=False)
    source = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)
    message = Column(Text, nullable=True)
    referrer = Column(String, nullable=True)
    referrer_url = Column(String, nullable=True)
    landing_page_url = Column(String, nullable=True)
    search_keywords = Column(String, nullable=True)
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    utm_term = Column(String, nullable=True)
    utm_content = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    device_type = Column(String, nullable=True)
    browser_name = Column(String, nullable=True)
    os_name = Column(String, nullable=True)
    country = Column(String, nullable=True)
    city = Column(String, nullable=True)
    region = Column(String, nullable=True)
    employees = Column(String, nullable=True)
    budget = Column(String, nullable=True)
    timeline = Column(String, nullable=True)
    inquiry_type = Column(String, nullable=True)
    inquiry_types = Column(JSON, nullable=True)
    info_sales_activity = Column(Text, nullable=True)
    score = Column(Integer, nullable=True)
    ai_analysis_report = Column(Text, nullable=True)
    ai_draft_proposal = Column(Text, nullable=True)
    ai_investigation = Column(JSON, nullable=True)
    created_at = _created_at()
    updated_at = _updated_at()


class Estimate(Base):
    """A quotation.  Totals are derived from ``items`` and never edited directly."""

    __tablename__ = "estimates"

    id = _id_column()
    estimate_number = Column(Integer, nullable=False, index=True)
    customer_name = Column(String, nullable=False)
    title = Column(String, nullable=False)
    items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Float, nullable=False, default=0)
    tax_total = Column(Float, nullable=False, default=0)
    grand_total = Column(Float, nullable=False, default=0)
    tax_inclusive = Column(Boolean, nullable=False, default=False)
    delivery_date = Column(String(10), nullable=True)
    payment_terms = Column(String, nullable=True)
    delivery_terms = Column(String, nullable=True)
    delivery_method = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft, submitted, ordered, lost
    version = Column(Integer, nullable=False, default=1)
    user_id = Column(String(64), nullable=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    project_name = Column(String, nullable=True)
    pdf_url = Column(String, nullable=True)
    tracking = Column(JSON, nullable=True)
    postal = Column(JSON, nullable=True)
    created_at = _created_at()
    updated_at = _updated_at()


class Invoice(Base):
    """A customer invoice built from one or more jobs."""

    __tablename__ = "invoices"

    id = _id_column()
    invoice_no = Column(String, nullable=False, unique=True)
    invoice_date = Column(String(10), nullable=False)
    due_date = Column(String(10), nullable=True)
    customer_name = Column(String, nullable=False)
    subtotal_amount = Column(Float, nullable=False, default=0)
    tax_amount = Column(Float, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="issued")  # draft, issued, paid, void
    paid_at = Column(DateTime, nullable=True)
    created_at = _created_at()

    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_index",
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_no} customer={self.customer_name}>"


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = _id_column()
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    job_id = Column(String(36), nullable=True)
    description = Column(String, nullable=True)
    quantity = Column(Float, nullable=False, default=1)
    unit = Column(String, nullable=True)
    unit_price = Column(Float, nullable=False, default=0)
    line_total = Column(Float, nullable=False, default=0)
    sort_index = Column(Integer, nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="items")


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = _id_column()
    supplier_name = Column(String, nullable=False)
    item_name = Column(String, nullable=False)
    order_date = Column(String(10), nullable=False)
    quantity = Column(Float, nullable=False, default=0)
    unit_price = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="ordered")  # ordered, received, cancelled
    created_at = _created_at()


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = _id_column()
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    quantity = Column(Float, nullable=False, default=0)
    unit = Column(String, nullable=True)
    unit_price = Column(Float, nullable=False, default=0)
    created_at = _created_at()


class BugReport(Base):
    __tablename__ = "bug_reports"

    id = _id_column()
    reporter_name = Column(String, nullable=False)
    report_type = Column(String, nullable=False)  # bug, improvement
    summary = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="Open")  # Open, In Progress, Closed
    created_at = _created_at()


class Project(Base):
    __tablename__ = "projects"

    id = _id_column()
    project_name = Column(String, nullable=False)
    customer_name = Column(String, nullable=True)
    customer_id = Column(String(36), nullable=True)
    status = Column(String, nullable=False, default="new")
    overview = Column(Text, nullable=True)
    extracted_details = Column(Text, nullable=True)
    user_id = Column(String(64), nullable=True)
    created_at = _created_at()
    updated_at = _updated_at()

    attachments = relationship(
        "ProjectAttachment", back_populates="project", cascade="all, delete-orphan"
    )


class ProjectAttachment(Base):
    __tablename__ = "project_attachments"

    id = _id_column()
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    category = Column(String, nullable=True)
    created_at = _created_at()

    project = relationship("Project", back_populates="attachments")


class ApplicationCode(Base):
    """A kind of approval request (expense reimbursement, leave, purchase, ...)."""

    __tablename__ = "application_codes"

    id = _id_column()
    code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = _created_at()


class ApprovalRoute(Base):
    """Ordered approvers, stored as ``{"steps": [{"approver_id": ...}, ...]}``."""

    __tablename__ = "approval_routes"

    id = _id_column()
    name = Column(String, nullable=False)
    route_data = Column(JSON, nullable=False, default=dict)
    created_at = _created_at()


class Application(Base):
    """An approval request travelling along an approval route."""

    __tablename__ = "applications"

    id = _id_column()
    applicant_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    application_code_id = Column(String(36), ForeignKey("application_codes.id"), nullable=True)
    approval_route_id = Column(String(36), ForeignKey("approval_routes.id"), nullable=False)
    form_data = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="pending_approval")  # pending_approval, approved, rejected
    current_level = Column(Integer, nullable=False, default=1)
    approver_id = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    created_at = _created_at()


class InboxItem(Base):
    """An uploaded invoice/receipt awaiting OCR extraction and human review."""

    __tablename__ = "inbox_items"

    id = _id_column()
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    status = Column(String, nullable=False, default="processing")  # processing, pending_review, approved, error
    extracted_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = _created_at()


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = _id_column()
    date = Column(DateTime, default=_dt.datetime.utcnow, nullable=False)
    account = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    debit = Column(Float, nullable=False, default=0)
    credit = Column(Float, nullable=False, default=0)


class AccountItem(Base):
    __tablename__ = "account_items"

    id = _id_column()
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    category_code = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=True)
    created_at = _created_at()
    updated_at = _updated_at()


class PaymentRecipient(Base):
    __tablename__ = "payment_recipients"

    id = _id_column()
    recipient_code = Column(String, nullable=True)
    company_name = Column(String, nullable=False)
    recipient_name = Column(String, nullable=True)


class AllocationDivision(Base):
    __tablename__ = "allocation_divisions"

    id = _id_column()
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()


class Department(Base):
    __tablename__ = "departments"

    id = _id_column()
    name = Column(String, nullable=False)


class Title(Base):
    __tablename__ = "employee_titles"

    id = _id_column()
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()


class AnalysisHistory(Base):
    __tablename__ = "analysis_history"

    id = _id_column()
    user_id = Column(String(64), nullable=False, index=True)
    viewpoint = Column(String, nullable=True)
    data_sources = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    created_at = _created_at()
