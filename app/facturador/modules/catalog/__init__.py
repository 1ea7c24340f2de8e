"""Units, classifications, warehouses, articles, kits and price lists."""
