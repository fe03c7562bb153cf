"""Background workers."""
from .cleanup import cleanup_expired_ads, run_cleanup_worker

__all__ = ['cleanup_expired_ads', 'run_cleanup_worker']
