from .tenancy import Organization
from .orders import Order, OrderLine
from .codes import Batch, MasterCode, UniqueCode
from .scans import ScanEvent, ImmutableRecordError
from .shipments import ShipmentSession, ShipmentSessionItem, ValidationReport
from .documents import DocumentSequence

__all__ = [
    'Organization',
    'Order', 'OrderLine',
    'Batch', 'MasterCode', 'UniqueCode',
    'ScanEvent', 'ImmutableRecordError',
    'ShipmentSession', 'ShipmentSessionItem', 'ValidationReport',
    'DocumentSequence',
]
