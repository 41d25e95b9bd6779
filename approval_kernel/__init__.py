"""
Approval Kernel - multi-level document approval workflows

Configurable approval workflows for procurement documents with:
- Versionless, soft-deletable workflow definitions per document type
- Rule-based selection of approval levels at initiation
- Append-only approval history per instance
- Optimistic single-writer-per-instance persistence
- Best-effort, hash-chained audit trail
"""

__version__ = "0.1.0"
