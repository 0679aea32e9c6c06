"""
Shared trading core: domain models, broker and market-data interfaces,
and symbol helpers used by the signal, execution and ledger services.
"""
