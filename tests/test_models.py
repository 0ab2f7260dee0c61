import datetime as dt

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from printshop_erp.models import Application, ApprovalRoute, Base, Invoice, InvoiceItem, Job


def test_invoice_item_relationship(tmp_path):
    # Use a temporary SQLite database for testing
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    session = Session(engine)
    invoice = Invoice(
        invoice_no="INV-001",
        invoice_date="2025-07-24",
        customer_name="Test Customer",
        subtotal_amount=300.0,
        tax_amount=30.0,
        total_amount=330.0,
    )
    invoice.items.append(InvoiceItem(description="Posters", quantity=1, unit_price=200.0, sort_index=1))
    invoice.items.append(InvoiceItem(description="Flyers", quantity=1, unit_price=100.0, sort_index=0))
    session.add(invoice)
    session.commit()
    session.expire_all()
    # fetch and verify
    fetched = session.query(Invoice).filter_by(invoice_no="INV-001").first()
    assert fetched is not None
    assert [item.description for item in fetched.items] == ["Flyers", "Posters"]
    assert fetched.status == "issued"
    assert isinstance(fetched.created_at, dt.datetime)
    session.close()


def test_defaults_for_jobs_and_applications(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    session = Session(engine)
    job = Job(job_number=20250001, client_name="Acme", title="Flyers")
    route = ApprovalRoute(name="Managers", route_data={"steps": [{"approver_id": "boss"}]})
    session.add_all([job, route])
    session.flush()
    app = Application(applicant_id="u1", approval_route_id=route.id)
    session.add(app)
    session.commit()
    assert len(job.id) == 36
    assert job.invoice_status == "uninvoiced"
    assert job.ready_to_invoice is False
    assert app.status == "pending_approval"
    assert app.current_level == 1
    assert session.get(ApprovalRoute, route.id).route_data == {"steps": [{"approver_id": "boss"}]}
    session.close()
