"""
acme-certsync - Automated issuance, renewal and distribution of ACME TLS certificates.
"""

from . import (
    account,
    acme,
    authorization,
    certificate,
    exceptions,
    issuance,
    models,
    retry,
    scheduler,
    secret,
    server,
    store,
    sync,
    utils,
    vulcand,
)

# Import main public API
from .config import Config
from .core import CertificateManager

__version__ = "0.1.0"

__all__ = [
    # High-level API (recommended for most users)
    "CertificateManager",
    "Config",
    # Low-level modules (for advanced usage)
    "account",
    "acme",
    "authorization",
    "certificate",
    "exceptions",
    "issuance",
    "models",
    "retry",
    "scheduler",
    "secret",
    "server",
    "store",
    "sync",
    "utils",
    "vulcand",
]
