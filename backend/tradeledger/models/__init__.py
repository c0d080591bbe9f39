from .catalog import Warehouse, Product, StockLevel, StockMovement, StockTransfer
from .parties import Party
from .documents import TradeDocument, TradeDocumentLine, DocumentSequence
from .payments import PaymentRecord, DeletedPaymentAudit, CreditNote, CreditNoteLine

__all__ = [
    'Warehouse', 'Product', 'StockLevel', 'StockMovement', 'StockTransfer',
    'Party',
    'TradeDocument', 'TradeDocumentLine', 'DocumentSequence',
    'PaymentRecord', 'DeletedPaymentAudit', 'CreditNote', 'CreditNoteLine',
]
