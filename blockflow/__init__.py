"""
Blockflow - A concurrent execution engine for block-based workflows.

Workflows are directed acyclic graphs of typed blocks. Independent
branches run concurrently, failures stop their descendants, and every
run produces an auditable execution record.
"""

__version__ = "0.1.0"
