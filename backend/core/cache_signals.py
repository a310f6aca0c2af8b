"""
Cache invalidation signals
Automatically invalidate cache when data changes
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging
import threading
from contextlib import contextmanager

from .cache_utils import invalidate_dashboard_cache

logger = logging.getLogger(__name__)

# Models whose changes alter the dashboard statistics
DASHBOARD_MODELS = {'Material', 'Serial', 'Order', 'OrderLine', 'Assignment'}

# Thread-local storage to track signal suspension
_thread_locals = threading.local()


@contextmanager
def suspend_cache_signals():
    """
    Temporarily suspend cache invalidation signals for bulk operations.
    The dashboard cache is invalidated once when the block exits.
    """
    previous = is_suspended()
    _thread_locals.suspended = True
    try:
        yield
    finally:
        _thread_locals.suspended = previous
        if not previous:
            transaction.on_commit(invalidate_dashboard_cache)


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


@receiver([post_save, post_delete])
def invalidate_dashboard_on_change(sender, instance, **kwargs):
    """Invalidate dashboard cache when stock, orders or assignments change"""
    if is_suspended() or sender.__name__ not in DASHBOARD_MODELS:
        return
    # After commit, so a concurrent request cannot re-cache pre-commit data
    transaction.on_commit(invalidate_dashboard_cache)
