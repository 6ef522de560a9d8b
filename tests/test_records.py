import uuid

import pytest
from sqlmodel import Session, select

from lotcontrol.core.config import settings
from lotcontrol.core.exceptions import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError
)
from lotcontrol.db.schema import (
    AuditLogEntry, Control, ParameterKind, ProductSpecification, Record, RecordStatus
)
from lotcontrol.models.control import ControlSubmission, Measurement
from lotcontrol.models.record import RecordCreate, RecordUpdate
from lotcontrol.services.record import RecordService


@pytest.fixture()
def service(session):
    return RecordService(session)


@pytest.fixture()
def specs(session, product):
    """PESO 235-245 g, COLOR 'Transparente', and an inactive LARGO."""
    peso = ProductSpecification(
        product_id=product.id, name="PESO", kind=ParameterKind.RANGE,
        expected_value="240", min_range=235, max_range=245, unit="g")
    color = ProductSpecification(
        product_id=product.id, name="COLOR", kind=ParameterKind.TEXT,
        expected_value="Transparente")
    largo = ProductSpecification(
        product_id=product.id, name="LARGO", kind=ParameterKind.NUMERIC, active=False)
    session.add_all([peso, color, largo])
    session.commit()
    for spec in (peso, color, largo):
        session.refresh(spec)
    return {"peso": peso, "color": color, "largo": largo}


def snapshot(session, record_id):
    session.expire_all()
    return session.get(Record, record_id).model_dump()


# ── Create ───────────────────────────────────────────────────────────────


def test_create_starts_pending_and_owned_by_caller(service, worker, product):
    record = service.create_record(worker, RecordCreate(
        product_id=product.id, internal_lot=" TPT45-2024-002 ", quantity=500))

    assert record.status == RecordStatus.PENDING
    assert record.user_id == worker.user_id
    assert record.internal_lot == "TPT45-2024-002"
    assert record.approved_by is None and record.approval_date is None


def test_duplicate_internal_lot_conflicts(service, worker, product):
    service.create_record(worker, RecordCreate(
        product_id=product.id, internal_lot="TPT45-2024-001", quantity=10))

    with pytest.raises(ConflictError) as exc:
        service.create_record(worker, RecordCreate(
            product_id=product.id, internal_lot="TPT45-2024-001", quantity=20))
    assert exc.value.field == "internal_lot"


def test_internal_lot_is_case_sensitive(service, worker, product):
    service.create_record(worker, RecordCreate(
        product_id=product.id, internal_lot="lote-a", quantity=1))
    record = service.create_record(worker, RecordCreate(
        product_id=product.id, internal_lot="LOTE-A", quantity=1))
    assert record.internal_lot == "LOTE-A"


@pytest.mark.parametrize("quantity", [0, -5])
def test_quantity_must_be_positive(service, worker, product, quantity):
    with pytest.raises(ValidationError) as exc:
        service.create_record(worker, RecordCreate(
            product_id=product.id, internal_lot="L-1", quantity=quantity))
    assert exc.value.field == "quantity"


def test_unknown_product(service, worker):
    with pytest.raises(NotFoundError):
        service.create_record(worker, RecordCreate(
            product_id=uuid.uuid4(), internal_lot="L-1", quantity=1))


def test_create_requires_permission(service, outsider, product):
    with pytest.raises(AuthorizationError):
        service.create_record(outsider, RecordCreate(
            product_id=product.id, internal_lot="L-1", quantity=1))


# ── Update / delete ──────────────────────────────────────────────────────


def test_update_pending_record(service, worker, record):
    updated = service.update_record(worker, record.id, RecordUpdate(
        quantity=900, supplier_lot="PROV-779"))

    assert updated.quantity == 900
    assert updated.supplier_lot == "PROV-779"
    assert updated.internal_lot == "TPT45-2024-001"


def test_update_rechecks_lot_uniqueness_excluding_itself(service, session, worker, product, record):
    other = service.create_record(worker, RecordCreate(
        product_id=product.id, internal_lot="OTRO-LOTE", quantity=1))

    same = service.update_record(worker, record.id, RecordUpdate(internal_lot="TPT45-2024-001"))
    assert same.internal_lot == "TPT45-2024-001"

    with pytest.raises(ConflictError):
        service.update_record(worker, record.id, RecordUpdate(internal_lot=other.internal_lot))


def test_worker_cannot_delete(service, worker, record):
    with pytest.raises(AuthorizationError):
        service.delete_record(worker, record.id)


def test_delete_pending_record(service, session, supervisor, record):
    assert service.delete_record(supervisor, record.id) == {"message": "Record deleted successfully."}

    session.expire_all()
    assert session.get(Record, record.id) is None


# ── Approve / reject ─────────────────────────────────────────────────────


def test_approve_sets_approver_and_date(service, supervisor, record):
    approved = service.approve_record(supervisor, record.id)

    assert approved.status == RecordStatus.APPROVED
    assert approved.approved_by == supervisor.user_id
    assert approved.approval_date is not None


def test_reject_appends_reason(service, supervisor, record):
    rejected = service.reject_record(supervisor, record.id, "Peso fuera de rango")

    assert rejected.status == RecordStatus.REJECTED
    assert rejected.approved_by == supervisor.user_id
    assert rejected.approval_date is not None
    assert rejected.observations == "Recibido sin novedad\n\nRejected: Peso fuera de rango"


def test_reject_without_prior_observations(service, session, supervisor, record):
    record.observations = None
    session.add(record)
    session.commit()

    rejected = service.reject_record(supervisor, record.id, "Color incorrecto")
    assert rejected.observations == "Rejected: Color incorrecto"


def test_worker_cannot_approve(service, worker, record):
    with pytest.raises(AuthorizationError):
        service.approve_record(worker, record.id)


def test_approved_record_cannot_be_deleted(service, supervisor, record):
    service.approve_record(supervisor, record.id)

    with pytest.raises(ConflictError) as exc:
        service.delete_record(supervisor, record.id)
    assert "Only pending records can be deleted" in exc.value.message


@pytest.mark.parametrize("terminal", ["approve", "reject"])
def test_terminal_records_reject_every_transition(service, session, supervisor, record, terminal):
    if terminal == "approve":
        service.approve_record(supervisor, record.id)
    else:
        service.reject_record(supervisor, record.id, "No conforme")
    before = snapshot(session, record.id)

    attempts = [
        lambda: service.update_record(supervisor, record.id, RecordUpdate(quantity=1)),
        lambda: service.delete_record(supervisor, record.id),
        lambda: service.approve_record(supervisor, record.id),
        lambda: service.reject_record(supervisor, record.id, "otra vez"),
        lambda: service.submit_controls(supervisor, record.id, ControlSubmission()),
    ]
    for attempt in attempts:
        with pytest.raises(ConflictError):
            attempt()
        assert snapshot(session, record.id) == before


# ── Compare-and-swap guards ──────────────────────────────────────────────


def test_stale_reader_loses_the_race(engine, supervisor, admin, record):
    """Both principals read 'pending'; only the first transition commits."""
    with Session(engine) as first, Session(engine) as second:
        stale = first.get(Record, record.id)
        assert stale.status == RecordStatus.PENDING

        RecordService(second).approve_record(admin, record.id)

        with pytest.raises(ConflictError):
            RecordService(first).reject_record(supervisor, record.id, "tarde")

    with Session(engine) as check:
        final = check.get(Record, record.id)
        assert final.status == RecordStatus.APPROVED
        assert final.approved_by == admin.user_id
        assert "tarde" not in (final.observations or "")


def test_stale_delete_after_approval_conflicts(engine, supervisor, admin, record):
    with Session(engine) as first, Session(engine) as second:
        first.get(Record, record.id)
        RecordService(second).approve_record(admin, record.id)

        with pytest.raises(ConflictError):
            RecordService(first).delete_record(supervisor, record.id)

    with Session(engine) as check:
        assert check.get(Record, record.id).status == RecordStatus.APPROVED


# ── Quality-control submission ───────────────────────────────────────────


def test_submit_evaluates_every_active_specification(service, worker, record, specs):
    controls = service.submit_controls(worker, record.id, ControlSubmission(measurements=[
        Measurement(specification_id=specs["peso"].id, value="240.5"),
        Measurement(specification_id=specs["color"].id, value="Opaco", observation="Lote turbio"),
    ]))

    by_name = {c.parameter_name: c for c in controls}
    assert [c.parameter_name for c in controls] == ["COLOR", "PESO"]

    assert by_name["PESO"].out_of_range is False
    assert by_name["PESO"].control_value == 240.5
    assert by_name["PESO"].text_control is None
    assert by_name["PESO"].full_range == "235 - 245 g"
    assert by_name["PESO"].parameter_type == ParameterKind.RANGE

    assert by_name["COLOR"].out_of_range is True
    assert by_name["COLOR"].text_control == "Opaco"
    assert by_name["COLOR"].control_value is None
    assert "Transparente" in by_name["COLOR"].alert_message
    assert by_name["COLOR"].observation == "Lote turbio"


def test_submit_out_of_range_value(service, worker, record, specs):
    controls = service.submit_controls(worker, record.id, ControlSubmission(measurements=[
        Measurement(specification_id=specs["peso"].id, value=200),
    ]))

    peso = next(c for c in controls if c.parameter_name == "PESO")
    assert peso.out_of_range is True
    assert peso.control_value == 200
    assert "235 - 245" in peso.alert_message


def test_unmeasured_specification_is_recorded_as_valid_and_empty(service, worker, record, specs):
    controls = service.submit_controls(worker, record.id, ControlSubmission())

    assert len(controls) == 2
    for control in controls:
        assert control.out_of_range is False
        assert control.control_value is None
        assert control.text_control is None


def test_unparsable_numeric_value_is_kept_as_text(service, worker, record, specs):
    controls = service.submit_controls(worker, record.id, ControlSubmission(measurements=[
        Measurement(specification_id=specs["peso"].id, value="doscientos"),
    ]))

    peso = next(c for c in controls if c.parameter_name == "PESO")
    assert peso.out_of_range is True
    assert peso.text_control == "doscientos"
    assert peso.control_value is None


def test_submit_leaves_status_and_happens_once(service, session, worker, record, specs):
    service.submit_controls(worker, record.id, ControlSubmission())

    stored = service.get_record(record.id)
    assert stored.status == RecordStatus.PENDING
    assert stored.controls_submitted_at is not None

    with pytest.raises(ConflictError):
        service.submit_controls(worker, record.id, ControlSubmission())
    assert len(service.list_controls(record.id)) == 2


def test_measurement_for_inactive_specification_is_rejected(service, session, worker, record, specs):
    with pytest.raises(ValidationError) as exc:
        service.submit_controls(worker, record.id, ControlSubmission(measurements=[
            Measurement(specification_id=specs["largo"].id, value="12"),
        ]))
    assert exc.value.field == "measurements"
    assert session.exec(select(Control)).all() == []


def test_controls_snapshot_survives_specification_changes(service, session, worker, record, specs):
    service.submit_controls(worker, record.id, ControlSubmission(measurements=[
        Measurement(specification_id=specs["peso"].id, value="240"),
    ]))

    peso = session.get(ProductSpecification, specs["peso"].id)
    peso.name = "PESO NETO"
    peso.min_range = 100
    session.add(peso)
    session.commit()

    control = next(c for c in service.list_controls(record.id) if c.specification_id == peso.id)
    assert control.parameter_name == "PESO"
    assert control.full_range == "235 - 245 g"


def test_approval_can_require_submitted_controls(service, supervisor, worker, record, specs, monkeypatch):
    monkeypatch.setattr(settings, "require_controls_before_approval", True)

    with pytest.raises(ConflictError):
        service.approve_record(supervisor, record.id)

    service.submit_controls(worker, record.id, ControlSubmission())
    assert service.approve_record(supervisor, record.id).status == RecordStatus.APPROVED


# ── Queries ──────────────────────────────────────────────────────────────


def test_list_records_filters_and_paginates(service, worker, supervisor, product, record):
    for n in range(3):
        service.create_record(worker, RecordCreate(
            product_id=product.id, internal_lot=f"EXTRA-{n}", quantity=1))
    service.approve_record(supervisor, record.id)

    page = service.list_records(page=1, limit=2)
    assert page.total == 4
    assert len(page.items) == 2

    approved = service.list_records(status=RecordStatus.APPROVED)
    assert [r.internal_lot for r in approved.items] == ["TPT45-2024-001"]

    search = service.list_records(search="extra-1")
    assert [r.internal_lot for r in search.items] == ["EXTRA-1"]


# ── Audit ────────────────────────────────────────────────────────────────


def test_transitions_are_audited_with_before_and_after(service, session, supervisor, record):
    service.reject_record(supervisor, record.id, "No conforme")

    entry = session.exec(select(AuditLogEntry).where(
        AuditLogEntry.action == "record.rejected")).one()
    assert entry.resource == "records"
    assert entry.resource_id == str(record.id)
    assert entry.details["before"]["status"] == "pending"
    assert entry.details["after"]["status"] == "rejected"
    assert entry.details["rejection_reason"] == "No conforme"


def test_failed_transition_writes_no_audit_entry(service, session, worker, record):
    with pytest.raises(AuthorizationError):
        service.approve_record(worker, record.id)

    assert session.exec(select(AuditLogEntry)).all() == []
