"""
approval_services -- caller-facing operations of the approval engine.

Responsibility:
    ``ApprovalWorkflow`` wires the kernel services over one session and
    exposes the operations a UI or API layer calls.  Typed kernel errors
    are converted to structured results here.

Architecture position:
    Services -- orchestration over the kernel and the batch scheduler.

    Dependency direction:
        approval_services/ -> approval_kernel/, approval_batch/, approval_config/
        approval_kernel/   -> approval_services/ (FORBIDDEN)
"""

from approval_services.workflow import ApprovalWorkflow

__all__ = ["ApprovalWorkflow"]
