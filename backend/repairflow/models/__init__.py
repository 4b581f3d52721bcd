from .shops import Shop, Customer
from .tickets import Ticket
from .estimates import Estimate, EstimateLine
from .invoices import Invoice, InvoiceLine, Payment
from .warranty import WarrantyClaim
from .documents import DocumentSequence, LedgerEvent

__all__ = [
    'Shop', 'Customer',
    'Ticket',
    'Estimate', 'EstimateLine',
    'Invoice', 'InvoiceLine', 'Payment',
    'WarrantyClaim',
    'DocumentSequence', 'LedgerEvent',
]
