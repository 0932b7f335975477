"""
Claims Kernel - expense claim approval workflow core

A guarded, auditable approval engine with:
- Risk-aware routing of claims to manager / HR / administrator steps
- Exactly one decision applied at a time per claim (CAS lock + version check)
- Append-only, hash-chained approval history
- Pluggable claim stores (in-memory, SQLAlchemy)
"""

__version__ = "0.1.0"
