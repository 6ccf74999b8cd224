"""Errors raised around shared-secret access checks."""


class LockAcquisitionError(Exception):
    """The distributed lock stayed held (or Redis was unreachable) through every retry."""

    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock {key}")
        self.key = key


class RateLimitedError(Exception):
    """Too many failed shared-secret attempts. Carries only the world name."""

    def __init__(self, world_name: str):
        super().__init__(
            f'Too many failed shared-secret attempts for world "{world_name}". Try again later.'
        )
        self.world_name = world_name
