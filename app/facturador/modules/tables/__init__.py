"""Restaurant floor: zones, tables, reservations and the waiter table workflow."""
