"""
Payment Kernel

Recurring payment-approval requests with:
- Timezone-aware recurrence scheduling
- Role-gated approval workflow (draft -> ready -> paid)
- Append-only, field-level change history
- Opaque reference-file storage
"""

__version__ = "0.1.0"
