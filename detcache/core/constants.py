"""
System-Wide Constants for the Content-Addressed Cache

All magic numbers and layout literals centralized here.
"""

from typing import Final

# =============================================================================
# SIZE UNITS
# =============================================================================
KB: Final[int] = 1024

# =============================================================================
# PATH SCHEME
# =============================================================================
# <root>/<FS_NAMESPACE>/<FS_KV_SEGMENT>/<aa>/<bb>/<rest>
FS_NAMESPACE: Final[str] = "detcache"
FS_KV_SEGMENT: Final[str] = "kv-cache"
TEMP_SUFFIX_PREFIX: Final[str] = ".tmp-"

HASH_HEX_LENGTH: Final[int] = 64

# =============================================================================
# HASHING
# =============================================================================
HASH_CHUNK_BYTES: Final[int] = 64 * KB

# =============================================================================
# CONFIGURATION
# =============================================================================
CONFIG_ENV_VAR: Final[str] = "DETCACHE_CONFIG"
DEFAULT_CACHE_NAME: Final[str] = "default"

# =============================================================================
# CLI EXIT CODES
# =============================================================================
EXIT_SUCCESS: Final[int] = 0
EXIT_VALUE_NOT_FOUND: Final[int] = 1
EXIT_CACHE_ERROR: Final[int] = 2
EXIT_INVALID_KEY: Final[int] = 3
EXIT_CONFIG_ERROR: Final[int] = 4

# =============================================================================
# METRIC NAMES
# =============================================================================
METRIC_BACKEND_OPERATIONS: Final[str] = "detcache_backend_operations_total"
METRIC_BACKEND_LATENCY: Final[str] = "detcache_backend_latency_seconds"
METRIC_PROMOTIONS: Final[str] = "detcache_promotions_total"
