"""
toolgate Resilience Module
==========================

Error taxonomy, result memoization, and call serialization.
"""

from .call_serializer import CallSerializer
from .errors import (
    CommandTimeoutError,
    ExecutableNotFoundError,
    InvalidArgumentError,
    InvalidExecutablePathError,
    MutexTimeoutError,
    OutputLimitError,
    ProcessError,
    RejectedCommandError,
    ToolGateError,
)
from .result_cache import (
    CACHE_TTL_CONFIG,
    CACHE_VERSION,
    CacheEntry,
    CacheStats,
    ResultCache,
    generate_cache_key,
    get_result_cache,
    is_cacheable_result,
    normalize_params,
    set_result_cache,
    ttl_for_key,
)

__all__ = [
    # Serializer
    "CallSerializer",
    # Errors
    "ToolGateError",
    "RejectedCommandError",
    "InvalidArgumentError",
    "InvalidExecutablePathError",
    "ExecutableNotFoundError",
    "ProcessError",
    "OutputLimitError",
    "CommandTimeoutError",
    "MutexTimeoutError",
    # Cache
    "ResultCache",
    "CacheEntry",
    "CacheStats",
    "CACHE_TTL_CONFIG",
    "CACHE_VERSION",
    "generate_cache_key",
    "get_result_cache",
    "set_result_cache",
    "is_cacheable_result",
    "normalize_params",
    "ttl_for_key",
]
