"""
Invoicing module.

An invoice is issued against the caller's open cash-register session, takes its
number from the register's sequence, consumes inventory and, for retail credit
sales, opens a receivable in `cxc`.
"""
