"""
Payment lifecycle signals.

``purchase_completed`` is sent inside the confirming transaction, so receivers
that write rows (enrollment, instructor earning) commit or roll back together
with the purchase itself. Side effects that must not run on rollback belong in
``transaction.on_commit``.
"""
from django.dispatch import Signal

# kwargs: purchase
purchase_completed = Signal()
