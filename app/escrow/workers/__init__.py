"""
Background workers for the escrow engine.

- purge_expired_cases: Deletes stored artifacts of cases past their purge
  deadline

Usage:
    from escrow.workers import purge_expired_cases

    purge_expired_cases.delay()
"""

from escrow.workers.purge_worker import purge_expired_cases

__all__ = ["purge_expired_cases"]
