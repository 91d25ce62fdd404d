from __future__ import annotations


class PermanentJobError(RuntimeError):
    """The job can never succeed; skip any remaining retry attempts."""
