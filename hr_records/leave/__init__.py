"""Leave module: date ranges, balance ledger, request lifecycle and workflow."""
