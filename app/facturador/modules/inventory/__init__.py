"""
Inventory module.

Transactions (purchases, adjustments, transfers, consumption) post signed
movements and keep per-warehouse stock in retail units. Invoices consume stock
through `register_invoice_movements` and reverse it on cancellation.
"""
