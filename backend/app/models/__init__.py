from .inventory import Item, StockMovement
from .parties import Client, Supplier
from .sales import Sale, SaleLine
from .purchasing import PurchaseOrder, PurchaseOrderLine
from .settlement import Receivable, Installment
from .containers import ContainerBatch, ContainerPoolRow, ContainerSale
from .activity import ActivityLog

__all__ = [
    'Item', 'StockMovement',
    'Client', 'Supplier',
    'Sale', 'SaleLine',
    'PurchaseOrder', 'PurchaseOrderLine',
    'Receivable', 'Installment',
    'ContainerBatch', 'ContainerPoolRow', 'ContainerSale',
    'ActivityLog',
]
