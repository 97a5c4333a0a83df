from .catalog import (
    StockDirection,
    Warehouse,
    Product,
    Barcode,
    Tax,
    ProductTax,
    DocumentType,
    ApplicationSettings,
)
from .documents import Document, DocumentItem, DocumentItemTax, DocumentNumber
from .inventory import (
    Stock,
    Kardex,
    KardexHistory,
    Counter,
    KARDEX_ENTRADA,
    KARDEX_SALIDA,
    KARDEX_AJUSTE,
    KARDEX_TYPES,
)

__all__ = [
    'StockDirection',
    'Warehouse', 'Product', 'Barcode', 'Tax', 'ProductTax', 'DocumentType', 'ApplicationSettings',
    'Document', 'DocumentItem', 'DocumentItemTax', 'DocumentNumber',
    'Stock', 'Kardex', 'KardexHistory', 'Counter',
    'KARDEX_ENTRADA', 'KARDEX_SALIDA', 'KARDEX_AJUSTE', 'KARDEX_TYPES',
]
