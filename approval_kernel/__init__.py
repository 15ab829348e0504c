"""
Approval Kernel - authorization and delegation engine.

Role-based expense approval core with:
- Department budget evaluation against approved spend
- Approval authority resolution with a deterministic fallback
- Temporary-approver delegation lifecycle with compensating actions
- Idempotent, concurrency-safe expiry sweeping
- Role- and assignment-aware notification routing
"""

__version__ = "0.1.0"
