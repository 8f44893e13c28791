from .hybrid import (
    HybridDecryptor,
    HybridEncryptor,
    generate_identity,
    load_private_key,
)

__all__ = [
    "HybridDecryptor",
    "HybridEncryptor",
    "generate_identity",
    "load_private_key",
]
