import pytest

from codetrack.errors import CodeNotFound, ValidationError
from codetrack.services import code_lookup_service
from codetrack.services.code_lookup_service import CODE_KIND_MASTER, CODE_KIND_UNIQUE, parse_code


@pytest.mark.parametrize("raw,kind,value", [
    ("PROD-ABC123", CODE_KIND_UNIQUE, "PROD-ABC123"),
    ("  prod-abc123\n", CODE_KIND_UNIQUE, "PROD-ABC123"),
    ("MASTER-XYZ", CODE_KIND_MASTER, "MASTER-XYZ"),
    ("https://track.test/track/product/PROD-ABC123", CODE_KIND_UNIQUE, "PROD-ABC123"),
    ("https://track.test/track/master/MASTER-XYZ/", CODE_KIND_MASTER, "MASTER-XYZ"),
])
def test_parse_code(raw, kind, value):
    ref = parse_code(raw)
    assert ref.kind == kind
    assert ref.value == value


@pytest.mark.parametrize("raw", ["", "   ", None, "SKU-123", "https://track.test/track/product/"])
def test_parse_code_rejects(raw):
    with pytest.raises(ValidationError):
        parse_code(raw)


def test_declared_kind_checked():
    assert parse_code("MASTER-1", expected_kind=CODE_KIND_MASTER).is_master
    with pytest.raises(ValidationError):
        parse_code("MASTER-1", expected_kind=CODE_KIND_UNIQUE)
    with pytest.raises(ValidationError):
        parse_code("MASTER-1", expected_kind="pallet")


def test_tracking_url():
    assert code_lookup_service.tracking_url("https://track.test/", CODE_KIND_UNIQUE, "PROD-1") == "https://track.test/track/product/PROD-1"
    assert code_lookup_service.tracking_url("https://track.test", CODE_KIND_MASTER, "MASTER-1") == "https://track.test/track/master/MASTER-1"


def test_resolve_loads_records(factory):
    batch = factory.batch((24,), buffer_percent=0)
    master = factory.master(batch)
    unit_code = factory.case_units(batch)[0]

    ref, record = code_lookup_service.resolve(master.code)
    assert ref.is_master and record.id == master.id

    ref, record = code_lookup_service.resolve(unit_code)
    assert not ref.is_master and record.code == unit_code

    with pytest.raises(CodeNotFound):
        code_lookup_service.resolve("MASTER-MISSING")
