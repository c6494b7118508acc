# Overview: Code Generator; sizes and persists a batch's full code hierarchy.

"""
Batch (Code Generator) Service

WHY: Every unit and case label for an order is minted up front so the
factory can print the whole run at once. Generation is the only place new
codes come into existence.

SIZING:
- total_unique = ceil(base_units * (1 + buffer% / 100))   (spare labels for misprints)
- total_master = ceil(total_unique / units_per_case)
- every case expects units_per_case units except the last, which expects the
  remainder
- unit codes are allotted to order lines by cumulative rounding so the
  per-line counts add up to exactly total_unique

Arithmetic is Decimal so 480 * 1.10 is 528, not 528.0000000000001 -> 529.

ATOMICITY: Batch, master codes and unit codes are written in one transaction.
The caller commits once; a failure leaves no trace.
"""

from __future__ import annotations

import base64
import logging
import secrets
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal

from flask import current_app
from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    BatchNotFound,
    DuplicateBatch,
    InvalidOrderState,
    OrderNotFound,
    ValidationError,
)
from ..models import Batch, MasterCode, Order, UniqueCode
from ..models.codes import (
    BATCH_STATUS_GENERATED,
    BATCH_STATUS_IN_PRODUCTION,
    MASTER_CODE_PREFIX,
    MASTER_STATUS_GENERATED,
    UNIQUE_CODE_PREFIX,
    UNIQUE_STATUS_GENERATED,
)
from ..models.orders import CODE_ELIGIBLE_ORDER_STATUSES
from .concurrency import run_with_retry
from codetrack.time_utils import utcnow


logger = logging.getLogger(__name__)

# 10 random bytes -> 16 base32 characters, 80 bits of entropy per code
CODE_ENTROPY_BYTES = 10

# Rows per executemany round trip when inserting codes
INSERT_CHUNK_SIZE = 5000

PROGRESS_COUNTERS = (
    "linked_unit_count",
    "sealed_master_count",
    "received_master_count",
    "received_unit_count",
)


@dataclass
class BatchPlan:
    total_base_units: int
    total_unique_codes: int
    total_master_codes: int
    buffer_percent: int
    units_per_case: int
    case_sizes: list[int] = field(default_factory=list)
    # (line key, number of unit codes) in line order
    line_allocations: list[tuple] = field(default_factory=list)


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def _check_positive_int(name: str, value, *, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", details={name: value})
    if value < 0 or (value == 0 and not allow_zero):
        bound = "zero or greater" if allow_zero else "greater than zero"
        raise ValidationError(f"{name} must be {bound}", details={name: value})
    return value


def plan_batch(line_quantities: list[tuple], *, buffer_percent: int, units_per_case: int) -> BatchPlan:
    """
    Size a batch without touching the database.

    Args:
        line_quantities: [(line key, quantity), ...] in order-line order
        buffer_percent: spare percentage on top of the ordered units
        units_per_case: case capacity

    Returns:
        BatchPlan with totals, per-case expected counts and per-line allocations
    """
    buffer_percent = _check_positive_int("buffer_percent", buffer_percent, allow_zero=True)
    units_per_case = _check_positive_int("units_per_case", units_per_case)
    if not line_quantities:
        raise ValidationError("Order has no lines to generate codes for")

    for key, qty in line_quantities:
        _check_positive_int(f"quantity (line {key})", qty)

    factor = (Decimal(100) + Decimal(buffer_percent)) / Decimal(100)

    allocations = []
    cumulative = 0
    allotted = 0
    for key, qty in line_quantities:
        cumulative += qty
        upto = _ceil(Decimal(cumulative) * factor)
        allocations.append((key, upto - allotted))
        allotted = upto

    total_base = cumulative
    total_unique = allotted
    total_master = _ceil(Decimal(total_unique) / Decimal(units_per_case))

    case_sizes = [units_per_case] * total_master
    case_sizes[-1] = total_unique - (total_master - 1) * units_per_case

    return BatchPlan(
        total_base_units=total_base,
        total_unique_codes=total_unique,
        total_master_codes=total_master,
        buffer_percent=buffer_percent,
        units_per_case=units_per_case,
        case_sizes=case_sizes,
        line_allocations=allocations,
    )


def new_code(prefix: str) -> str:
    token = base64.b32encode(secrets.token_bytes(CODE_ENTROPY_BYTES)).decode("ascii")
    return f"{prefix}{token}"


def generate_codes(prefix: str, count: int) -> list[str]:
    """`count` distinct random codes in the given namespace."""
    codes: set[str] = set()
    while len(codes) < count:
        codes.add(new_code(prefix))
    return list(codes)


def _resolve_setting(explicit, order_value, config_key: str) -> int:
    if explicit is not None:
        return explicit
    if order_value is not None:
        return order_value
    return current_app.config[config_key]


def _insert_chunked(model, rows: list[dict]) -> None:
    for start in range(0, len(rows), INSERT_CHUNK_SIZE):
        db.session.execute(insert(model), rows[start:start + INSERT_CHUNK_SIZE])


def generate_batch(
    *,
    order_id: int,
    user_id: str | None = None,
    buffer_percent: int | None = None,
    units_per_case: int | None = None,
) -> Batch:
    """
    Create the batch and every master/unit code for an order.

    Does not commit; the caller commits once so the hierarchy appears
    atomically.

    Raises:
        OrderNotFound, InvalidOrderState, DuplicateBatch, ValidationError
    """
    def _op() -> Batch:
        order = db.session.get(Order, order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

        if order.status not in CODE_ELIGIBLE_ORDER_STATUSES:
            raise InvalidOrderState(
                f"Order {order.order_no} is {order.status}; codes can only be generated for "
                f"{' or '.join(CODE_ELIGIBLE_ORDER_STATUSES)} orders",
                details={"order_id": order.id, "status": order.status, "allowed": list(CODE_ELIGIBLE_ORDER_STATUSES)},
            )

        existing_id = db.session.query(Batch.id).filter_by(order_id=order.id).scalar()
        if existing_id:
            raise DuplicateBatch(
                f"Order {order.order_no} already has batch {existing_id}",
                details={"order_id": order.id, "batch_id": existing_id},
            )

        plan = plan_batch(
            [(line.id, line.quantity) for line in order.lines],
            buffer_percent=_resolve_setting(buffer_percent, order.buffer_percent, "DEFAULT_BUFFER_PERCENT"),
            units_per_case=_resolve_setting(units_per_case, order.units_per_case, "DEFAULT_UNITS_PER_CASE"),
        )

        batch = Batch(
            order_id=order.id,
            manufacturer_org_id=order.seller_org_id,
            status=BATCH_STATUS_GENERATED,
            total_base_units=plan.total_base_units,
            total_unique_codes=plan.total_unique_codes,
            total_master_codes=plan.total_master_codes,
            buffer_percent=plan.buffer_percent,
            units_per_case=plan.units_per_case,
            generated_at=utcnow(),
            generated_by_user_id=user_id,
        )
        db.session.add(batch)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateBatch(
                f"Order {order_id} already has a batch",
                details={"order_id": order_id},
            )

        master_values = generate_codes(MASTER_CODE_PREFIX, plan.total_master_codes)
        _insert_chunked(MasterCode, [
            {
                "code": value,
                "batch_id": batch.id,
                "case_number": case_number,
                "expected_unit_count": size,
                "actual_linked_count": 0,
                "status": MASTER_STATUS_GENERATED,
                "version_id": 1,
            }
            for case_number, (value, size) in enumerate(zip(master_values, plan.case_sizes), start=1)
        ])

        unique_values = generate_codes(UNIQUE_CODE_PREFIX, plan.total_unique_codes)
        rows = []
        sequence = 0
        for line_id, count in plan.line_allocations:
            for _ in range(count):
                rows.append({
                    "code": unique_values[sequence],
                    "batch_id": batch.id,
                    "order_line_id": line_id,
                    "sequence_number": sequence + 1,
                    "planned_case_number": sequence // plan.units_per_case + 1,
                    "status": UNIQUE_STATUS_GENERATED,
                    "version_id": 1,
                })
                sequence += 1
        _insert_chunked(UniqueCode, rows)

        logger.info(
            "Generated batch %s for order %s: %s unit codes in %s cases",
            batch.id, order.order_no, plan.total_unique_codes, plan.total_master_codes,
        )
        return batch

    return run_with_retry(_op)


def get_batch(batch_id: int) -> Batch:
    batch = db.session.get(Batch, batch_id)
    if not batch:
        raise BatchNotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
    return batch


def get_batch_summary(batch_id: int) -> dict:
    """Batch with its order number and a per-status breakdown of its master codes."""
    batch = get_batch(batch_id)
    status_counts = dict(
        db.session.query(MasterCode.status, db.func.count(MasterCode.id))
        .filter(MasterCode.batch_id == batch.id)
        .group_by(MasterCode.status)
        .all()
    )
    return {
        **batch.to_dict(),
        "order_no": batch.order.order_no,
        "master_status_counts": status_counts,
    }


def list_master_codes(batch_id: int, *, status: str | None = None) -> list[MasterCode]:
    get_batch(batch_id)
    q = db.session.query(MasterCode).filter(MasterCode.batch_id == batch_id)
    if status:
        q = q.filter(MasterCode.status == status)
    return q.order_by(MasterCode.case_number.asc()).all()


def _expire_if_loaded(model, pk) -> None:
    obj = db.session.identity_map.get(db.session.identity_key(model, pk))
    if obj is not None:
        db.session.expire(obj)


def bump_progress(batch_id: int, **deltas: int) -> None:
    """Increment batch progress counters in the database (col = col + n)."""
    unknown = set(deltas) - set(PROGRESS_COUNTERS)
    if unknown:
        raise ValueError(f"Unknown batch counters: {sorted(unknown)}")
    values = {name: getattr(Batch, name) + delta for name, delta in deltas.items() if delta}
    if not values:
        return
    values["version_id"] = Batch.version_id + 1
    db.session.execute(
        update(Batch)
        .where(Batch.id == batch_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    _expire_if_loaded(Batch, batch_id)


def mark_in_production(batch_id: int) -> None:
    """generated -> in_production on first packing activity; no-op afterwards."""
    result = db.session.execute(
        update(Batch)
        .where(Batch.id == batch_id, Batch.status == BATCH_STATUS_GENERATED)
        .values(status=BATCH_STATUS_IN_PRODUCTION, version_id=Batch.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        _expire_if_loaded(Batch, batch_id)
