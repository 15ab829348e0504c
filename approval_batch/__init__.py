"""
approval_batch -- periodic task scheduling for the approval engine.

In-process scheduler (``services.scheduler.InProcessScheduler``) and the
delegation expiry job (``tasks.delegation_tasks``).  Imports the kernel;
the kernel never imports this package.
"""
