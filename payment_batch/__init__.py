"""
payment_batch -- Periodic jobs for the payment kernel.

Provides a batch execution engine with per-item SAVEPOINT isolation, a
storage-level non-overlap guard, an in-process cron scheduler, and the two
periodic jobs: ``run_due_rules`` (every minute) and
``prune_requisites_files`` (daily at 02:00).

Architecture:
    payment_batch/ is a top-level package.  Nothing in payment_kernel/
    imports from payment_batch.

Invariants:
    - SAVEPOINT isolation per item
    - Clock injection (no datetime.now() calls)
    - Schedule evaluation is pure
    - One running instance per job name; overlapping triggers are skipped
    - Graceful shutdown
"""
