import uuid

import pytest

from lotcontrol.core.exceptions import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError
)
from lotcontrol.db.schema import Control, ParameterKind, ParameterTemplate, Record
from lotcontrol.models.specification import (
    SpecificationBind, SpecificationCreate, SpecificationImportRow, SpecificationUpdate
)
from lotcontrol.services.specification import SpecificationService


@pytest.fixture()
def service(session):
    return SpecificationService(session)


@pytest.fixture()
def peso(session):
    template = ParameterTemplate(
        name="PESO", kind=ParameterKind.RANGE, min_range=0, max_range=100, unit="kg")
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


@pytest.fixture()
def color(session):
    template = ParameterTemplate(
        name="COLOR", kind=ParameterKind.TEXT, default_value="Transparente")
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


def test_bind_copies_template_values(service, supervisor, product, color):
    spec = service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))

    assert spec.template_id == color.id
    assert spec.name == "COLOR"
    assert spec.kind == ParameterKind.TEXT
    assert spec.expected_value == "Transparente"
    assert spec.full_range == "Transparente"


def test_bind_overrides_are_product_specific(service, supervisor, product, peso):
    spec = service.bind_template(supervisor, product.id, SpecificationBind(
        template_id=peso.id, min_range=235, max_range=245, unit="g"))

    assert (spec.min_range, spec.max_range, spec.unit) == (235, 245, "g")
    assert spec.full_range == "235 - 245 g"


def test_binding_is_a_snapshot(service, session, supervisor, product, color):
    spec = service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))

    color.default_value = "Ámbar"
    color.kind = ParameterKind.NUMERIC
    session.add(color)
    session.commit()

    stored = service.get_specification(spec.id)
    assert stored.expected_value == "Transparente"
    assert stored.kind == ParameterKind.TEXT


def test_template_cannot_be_bound_twice(service, supervisor, product, color):
    service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))

    with pytest.raises(ConflictError):
        service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))


def test_deactivated_binding_frees_the_template(service, supervisor, product, color):
    first = service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))
    service.deactivate_specification(supervisor, first.id)

    second = service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))

    assert second.id != first.id
    with pytest.raises(ConflictError):
        service.update_specification(supervisor, first.id, SpecificationUpdate(active=True))


def test_bind_requires_existing_product_and_active_template(service, session, supervisor, product, color):
    with pytest.raises(NotFoundError):
        service.bind_template(supervisor, uuid.uuid4(), SpecificationBind(template_id=color.id))

    color.active = False
    session.add(color)
    session.commit()
    with pytest.raises(ValidationError) as exc:
        service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))
    assert exc.value.field == "template_id"


def test_worker_cannot_bind(service, worker, product, color):
    with pytest.raises(AuthorizationError):
        service.bind_template(worker, product.id, SpecificationBind(template_id=color.id))


def test_ad_hoc_specification_validates_range(service, supervisor, product):
    with pytest.raises(ValidationError):
        service.create_specification(supervisor, product.id, SpecificationCreate(
            name="ALTURA", kind=ParameterKind.RANGE, min_range=30, max_range=10))

    spec = service.create_specification(supervisor, product.id, SpecificationCreate(
        name="ALTURA", kind=ParameterKind.RANGE, min_range=10, max_range=30, unit="cm"))
    assert spec.template_id is None
    assert spec.full_range == "10 - 30 cm"


def test_unbound_templates(service, supervisor, product, peso, color):
    service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))

    assert [t.name for t in service.list_unbound_templates(product.id)] == ["PESO"]


def test_delete_refused_once_controls_reference_it(service, session, supervisor, product, color, record):
    spec = service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))
    session.add(Control(
        record_id=record.id, specification_id=spec.id, parameter_name="COLOR",
        full_range="Transparente", parameter_type=ParameterKind.TEXT, text_control="Transparente"))
    session.commit()

    with pytest.raises(ConflictError):
        service.delete_specification(supervisor, spec.id)


def test_delete_unreferenced_specification(service, supervisor, product, color):
    spec = service.bind_template(supervisor, product.id, SpecificationBind(template_id=color.id))

    service.delete_specification(supervisor, spec.id)

    assert service.list_for_product(product.id) == []


def test_evaluate_value_dry_run(service, supervisor, product, peso):
    spec = service.bind_template(supervisor, product.id, SpecificationBind(
        template_id=peso.id, min_range=235, max_range=245, unit="g"))

    ok = service.evaluate_value(spec.id, "240.5")
    bad = service.evaluate_value(spec.id, "200")

    assert ok.is_valid and ok.full_range == "235 - 245 g"
    assert not bad.is_valid and "235 - 245" in bad.message


def test_import_parses_tolerances(service, supervisor, product, peso):
    result = service.import_specifications(supervisor, product.id, [
        SpecificationImportRow(name="peso", tolerance="240 +/- 5", unit="g"),
        SpecificationImportRow(name="LARGO", kind=ParameterKind.RANGE, tolerance="10 - 20", unit="cm"),
        SpecificationImportRow(name="N° PUENTES", kind=ParameterKind.NUMERIC, tolerance="7"),
        SpecificationImportRow(name="COLOR", tolerance="Transparente"),
        SpecificationImportRow(name="OLOR", tolerance="   "),
    ])

    by_name = {s.name: s for s in result.created}
    assert set(by_name) == {"PESO", "LARGO", "N° PUENTES", "COLOR"}
    assert by_name["PESO"].template_id == peso.id
    assert (by_name["PESO"].expected_value, by_name["PESO"].min_range, by_name["PESO"].max_range) == ("240", 235, 245)
    assert (by_name["LARGO"].expected_value, by_name["LARGO"].min_range, by_name["LARGO"].max_range) == ("15", 10, 20)
    assert (by_name["N° PUENTES"].expected_value, by_name["N° PUENTES"].min_range) == ("7", 7)
    assert by_name["COLOR"].kind == ParameterKind.TEXT
    assert by_name["COLOR"].expected_value == "Transparente"
    assert result.skipped == ["OLOR"]
    assert result.errors == []


def test_import_accepts_single_point_ranges(service, supervisor, product, peso):
    result = service.import_specifications(supervisor, product.id, [
        SpecificationImportRow(name="PESO", tolerance="7"),
        SpecificationImportRow(name="ANCHO", kind=ParameterKind.RANGE, tolerance="7"),
        SpecificationImportRow(name="LARGO", kind=ParameterKind.RANGE, tolerance="240 +/- 0"),
    ])

    assert result.errors == []
    by_name = {s.name: s for s in result.created}
    assert by_name["PESO"].template_id == peso.id
    assert (by_name["PESO"].expected_value, by_name["PESO"].min_range, by_name["PESO"].max_range) == ("7", 7, 7)
    assert (by_name["ANCHO"].expected_value, by_name["ANCHO"].min_range, by_name["ANCHO"].max_range) == ("7", 7, 7)
    assert (by_name["LARGO"].min_range, by_name["LARGO"].max_range) == (240, 240)
    assert by_name["ANCHO"].full_range == "7 - 7"


def test_import_reports_bad_rows_without_stopping(service, supervisor, product):
    result = service.import_specifications(supervisor, product.id, [
        SpecificationImportRow(name="ANCHO", kind=ParameterKind.RANGE, tolerance="20 - 10"),
        SpecificationImportRow(name="ALTO", kind=ParameterKind.RANGE, tolerance="1 - 2"),
    ])

    assert [s.name for s in result.created] == ["ALTO"]
    assert len(result.errors) == 1
    assert result.errors[0].row == 1
    assert result.errors[0].name == "ANCHO"


def test_bind_still_requires_an_open_range(service, supervisor, product, peso):
    with pytest.raises(ValidationError) as exc:
        service.bind_template(supervisor, product.id, SpecificationBind(
            template_id=peso.id, min_range=5, max_range=5))

    assert exc.value.field == "min_range"
