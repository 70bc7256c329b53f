"""Tests for tax configuration CRUD and validation."""
import pytest

from enrollment_pricing.engine.errors import NotFoundError, ValidationError
from enrollment_pricing.engine.tax_resolver import TaxConfigurationProvider
from enrollment_pricing.services.tax_config_service import TaxConfigService, TaxConfigRecord


@pytest.fixture
def service(tmp_path):
    return TaxConfigService(tmp_path / 'data' / 'tax_configurations.csv')


def gst(**kwargs):
    values = dict(tax_id="", name="Goods and Services Tax", type="gst", rate="5",
                  code="GST", valid_from="2024-01-01")
    values.update(kwargs)
    return TaxConfigRecord(**values)


def test_create_generates_id_and_is_readable_by_engine(service):
    created = service.create_configuration(gst())

    assert created.tax_id == "TAX-GST"
    provider = TaxConfigurationProvider(service.csv_path)
    assert [c.tax_id for c in provider.configurations] == ["TAX-GST"]
    assert provider.configurations[0].code == "GST"


def test_list_sorted_by_order_then_code(service):
    service.create_configuration(gst(code="ZED", order=1))
    service.create_configuration(gst(code="CESS", order=2, type="custom"))
    service.create_configuration(gst(code="ALPHA", order=1))

    assert [r.code for r in service.list_configurations()] == ["ALPHA", "ZED", "CESS"]


@pytest.mark.parametrize("kwargs, message", [
    ({'name': ''}, "Name is required"),
    ({'code': ''}, "Tax code is required"),
    ({'type': 'sales'}, "Type must be one of"),
    ({'rate': '-2'}, "Rate must be a positive number"),
    ({'rate': 'abc'}, "Rate must be a number"),
    ({'order': 0}, "Order must be at least 1"),
    ({'valid_from': None}, "Valid from date is required"),
    ({'valid_to': '2023-12-31'}, "valid_to must be after valid_from"),
])
def test_invalid_configurations_rejected(service, kwargs, message):
    result = service.validate_configuration(gst(**kwargs))

    assert not result.valid
    assert any(message in e for e in result.errors), result.errors
    with pytest.raises(ValidationError):
        service.create_configuration(gst(**kwargs))
    assert service.list_configurations() == []


def test_codes_are_unique_ignoring_case(service):
    service.create_configuration(gst())

    with pytest.raises(ValidationError):
        service.create_configuration(gst(tax_id="TAX-OTHER", code="gst"))


def test_duplicate_id_rejected(service):
    service.create_configuration(gst())

    with pytest.raises(ValidationError):
        service.create_configuration(gst(tax_id="TAX-GST", code="GST2"))


def test_shared_order_is_a_warning(service):
    service.create_configuration(gst())

    result = service.validate_configuration(gst(tax_id="TAX-CESS", code="CESS"))

    assert result.valid
    assert any("shares order 1" in w for w in result.warnings)


def test_update_configuration(service):
    service.create_configuration(gst())

    updated = service.update_configuration("TAX-GST", {'rate': "7.5", 'is_inclusive': True})

    assert updated.rate == "7.5"
    stored = service.get_configuration("TAX-GST")
    assert stored.rate == "7.5"
    assert stored.is_inclusive is True


def test_invalid_update_rejected(service):
    service.create_configuration(gst())

    with pytest.raises(ValidationError):
        service.update_configuration("TAX-GST", {'rate': "-1"})
    assert service.get_configuration("TAX-GST").rate == "5"


def test_update_and_delete_unknown(service):
    with pytest.raises(NotFoundError):
        service.update_configuration("TAX-NOPE", {'rate': "1"})
    with pytest.raises(NotFoundError):
        service.delete_configuration("TAX-NOPE")


def test_delete_configuration(service):
    service.create_configuration(gst())
    service.create_configuration(gst(code="CESS", order=2))

    service.delete_configuration("TAX-GST")

    assert [r.tax_id for r in service.list_configurations()] == ["TAX-CESS"]
