"""
Ledger Operations

Pure functions over LedgerState. Each module owns one concern:
balances (endpoint primitives), mutations (CRUD), transfers, scheduler,
reduction and purge. The engine in budget_ledger.orchestrator serializes
calls into them and persists the result.
"""
