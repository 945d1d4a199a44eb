"""
Helper package for the pipeliner.
Provides encoding, fingerprinting, nonce, error, logging and database
utilities.
"""

from .encoding import (
    encode_body,
    encode_value,
)

from .fingerprint import (
    create_fingerprint,
    stable_hash,
)

from .nonce import (
    default_nonce_providers,
    env_nonce,
    hidden_field_nonce,
    meta_tag_nonce,
    resolve_nonce,
    static_nonce,
)

from .error import (
    PipelineError,
)

from .database import (
    Database,
    DatabaseConfiguration,
    new_database,
    new_database_from_env,
)

from .logging import (
    PipelineLogger,
    ColorFormatter,
    get_logger,
    setup_logging,
)

__all__ = [
    # Encoding
    "encode_body",
    "encode_value",
    # Fingerprints
    "create_fingerprint",
    "stable_hash",
    # Nonce providers
    "default_nonce_providers",
    "env_nonce",
    "hidden_field_nonce",
    "meta_tag_nonce",
    "resolve_nonce",
    "static_nonce",
    # Error handling
    "PipelineError",
    # Database utilities
    "Database",
    "DatabaseConfiguration",
    "new_database",
    "new_database_from_env",
    # Logging utilities
    "PipelineLogger",
    "ColorFormatter",
    "get_logger",
    "setup_logging",
]
