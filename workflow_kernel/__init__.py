"""
Workflow Kernel

The persistence and domain core of the HR approval workflow engine:
- Administrator-authored workflow rules with ordered step templates
- Frozen, per-subject approval chains
- Optimistically locked approval instances
- Append-only step outcomes and lifecycle events
"""

__version__ = "0.1.0"
