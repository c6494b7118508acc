# Overview: Resolution of raw scan payloads into master/unique code records.

"""
Code Lookup - one entry point for every scanner payload

WHY: Scanners hand us whatever the label encodes. Labels printed from the
batch workbook encode a tracking URL (".../track/product/PROD-XXXX"), older
or hand-keyed input is the bare code. Resolution is by namespace prefix, so a
master code can never be mistaken for a unit and vice versa.

CodeRef is the tagged variant every service dispatches on:
- kind == "master": value starts with MASTER-
- kind == "unique": value starts with PROD-
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from ..extensions import db
from ..errors import CodeNotFound, ValidationError
from ..models import MasterCode, UniqueCode
from ..models.codes import MASTER_CODE_PREFIX, UNIQUE_CODE_PREFIX


CODE_KIND_MASTER = "master"
CODE_KIND_UNIQUE = "unique"

CODE_KINDS = (CODE_KIND_MASTER, CODE_KIND_UNIQUE)

# Path segment used in tracking URLs for each kind
TRACKING_SEGMENTS = {
    CODE_KIND_UNIQUE: "product",
    CODE_KIND_MASTER: "master",
}


@dataclass(frozen=True)
class CodeRef:
    kind: str
    value: str

    @property
    def is_master(self) -> bool:
        return self.kind == CODE_KIND_MASTER


def normalize_payload(raw: str) -> str:
    """Strip whitespace and unwrap tracking URLs down to the code itself."""
    if raw is None:
        raise ValidationError("Code is required")
    value = str(raw).strip()
    if not value:
        raise ValidationError("Code is required")

    if "://" in value:
        path = urlparse(value).path.rstrip("/")
        value = path.rsplit("/", 1)[-1]

    return value.upper()


def parse_code(raw: str, *, expected_kind: str | None = None) -> CodeRef:
    """
    Classify a payload by namespace.

    Raises ValidationError for unknown prefixes, or when the caller declared
    a code_type that contradicts the payload.
    """
    value = normalize_payload(raw)

    if value.startswith(MASTER_CODE_PREFIX):
        ref = CodeRef(CODE_KIND_MASTER, value)
    elif value.startswith(UNIQUE_CODE_PREFIX):
        ref = CodeRef(CODE_KIND_UNIQUE, value)
    else:
        raise ValidationError(
            f"Unrecognized code format: {value}",
            details={"code": value},
        )

    if expected_kind is not None:
        if expected_kind not in CODE_KINDS:
            raise ValidationError(f"Unknown code_type {expected_kind!r}", details={"code_type": expected_kind})
        if expected_kind != ref.kind:
            raise ValidationError(
                f"Code {value} is a {ref.kind} code, not {expected_kind}",
                details={"code": value, "code_type": ref.kind, "declared_code_type": expected_kind},
            )
    return ref


def tracking_url(base_url: str, kind: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/track/{TRACKING_SEGMENTS[kind]}/{code}"


def get_master(ref: CodeRef) -> MasterCode:
    if not ref.is_master:
        raise ValidationError(f"Code {ref.value} is not a master code", details={"code": ref.value})
    master = db.session.query(MasterCode).filter_by(code=ref.value).first()
    if not master:
        raise CodeNotFound(f"Master code {ref.value} not found", details={"code": ref.value})
    return master


def get_unique(ref: CodeRef) -> UniqueCode:
    if ref.is_master:
        raise ValidationError(f"Code {ref.value} is not a unique code", details={"code": ref.value})
    unit = db.session.query(UniqueCode).filter_by(code=ref.value).first()
    if not unit:
        raise CodeNotFound(f"Unique code {ref.value} not found", details={"code": ref.value})
    return unit


def resolve(raw: str, *, expected_kind: str | None = None) -> tuple[CodeRef, MasterCode | UniqueCode]:
    """Parse and load in one step; returns (ref, record)."""
    ref = parse_code(raw, expected_kind=expected_kind)
    record = get_master(ref) if ref.is_master else get_unique(ref)
    return ref, record
