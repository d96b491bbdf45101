"""
Workflow Kernel

A state-transition engine for tracked entity fields with:
- Configured, role-gated transition graphs
- Immediate, scheduled and forced transitions
- Re-validation and staleness detection at execution time
- Ownership-aware access decisions
- Append-only transition history with revert
"""

__version__ = "0.1.0"
