"""
Accounts receivable (CxC).

Scope:
- Payment terms and customers with credit limits/status
- Documents (invoices, debit/credit notes, receipts) and their applications
- Credit lines, collection follow-ups and disputes
- Aging, statement, summary and due-date reports

Only available when the app runs in retail mode.
"""
