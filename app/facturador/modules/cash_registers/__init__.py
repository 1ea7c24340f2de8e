"""Cash registers, their open/close sessions and closing reports."""
