"""
Centralized environment detection utilities.

All functions check ENV only. Any other variable (REGION, hostnames) can be
spoofed in a deployment and must not relax security checks.
"""
import os
from functools import lru_cache

LOCAL_ENVS = frozenset({"local", "dev", "development", "test"})
PRODUCTION_ENVS = frozenset({"prod", "production"})


@lru_cache(maxsize=1)
def get_env_name() -> str:
    """
    Get the current environment name from ENV variable.

    Returns:
        Environment name (lowercase): 'local', 'dev', 'test', 'staging', 'prod', etc.
        Defaults to 'dev' if not set.
    """
    return os.getenv("ENV", "dev").lower()


@lru_cache(maxsize=1)
def is_local_env() -> bool:
    """True if ENV is one of LOCAL_ENVS."""
    return get_env_name() in LOCAL_ENVS


@lru_cache(maxsize=1)
def is_production_env() -> bool:
    """True if ENV is 'prod' or 'production'."""
    return get_env_name() in PRODUCTION_ENVS
