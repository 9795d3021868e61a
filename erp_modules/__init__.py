"""
ERP Modules.

Thin orchestration layers over the kernel, engines and the document state
machine.  Each module contains:
- Workflows (state machines and their guards)
- Configuration schemas (policy and settings)
- A service owning the transaction boundary of every public action

Modules:
- procurement: purchase orders, goods receipts, purchase invoices
- sales: sales orders, deliveries
- inventory: stock transfers, inventory adjustments, stock opname
- tolerance: delivery tolerance administration and resolution
"""
