"""Worlds API: shared-secret access guard with a Redis-coordinated failed-attempt limiter."""
