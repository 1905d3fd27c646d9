# Services module

from canteen.services.stock_balance_store import (
    BalanceSnapshot,
    StockBalanceStoreBase,
    SqlStockBalanceStore,
)
from canteen.services.document_gateway import (
    DocumentGatewayBase,
    DocumentLine,
    DocumentRef,
    SqlDocumentGateway,
)
