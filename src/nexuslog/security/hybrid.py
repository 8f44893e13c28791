"""
Hybrid RSA-OAEP + AES-GCM envelopes
-----------------------------------

Envelope wire format (JSON, base64 text fields):

    { "d": ciphertext, "k": wrapped key, "n": nonce, "t": GCM tag }

Decryption:
- RSA-OAEP unwrap of ``k`` with the configured private key
  (OAEP and MGF1 digest both ``oaep_hash``)
- the first ``key_size / 8`` bytes of the unwrapped material are the AES key
- AES-GCM decrypt of ``d`` with ``n`` and ``t``
- JSON parse of the plaintext

The key truncation is the sizing contract with the publishing side and is not
a KDF. Changing it breaks every envelope already published.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from typing import Any, Mapping, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nexuslog.protocol.errors import (
    AuthenticationFailure,
    ConfigurationError,
    InvalidPlaintext,
    MalformedEnvelope,
    PrivateKeyUnavailable,
)
from nexuslog.protocol.models import EncryptedEnvelope
from nexuslog.utils.json import json_dumps, json_loads

logger = logging.getLogger(__name__)

GCM_TAG_SIZE = 16
GCM_NONCE_SIZE = 12

_HASHES = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

_CIPHER_RE = re.compile(r"^aes-(128|192|256)-gcm$")

EnvelopeInput = Union[bytes, str, Mapping[str, Any], EncryptedEnvelope]


def _oaep(hash_name: str) -> padding.OAEP:
    try:
        algorithm = _HASHES[hash_name.lower()]()
    except KeyError:
        raise ConfigurationError(f"Unsupported OAEP hash: {hash_name}")
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=algorithm),
        algorithm=algorithm,
        label=None,
    )


def _check_cipher(name: str) -> int:
    """Return the key length in bits named by an ``aes-<bits>-gcm`` cipher."""
    match = _CIPHER_RE.match(name.lower())
    if not match:
        raise ConfigurationError(f"Unsupported cipher: {name} (only AES-GCM is supported)")
    return int(match.group(1))


def load_private_key(path: str, password: Optional[bytes] = None) -> rsa.RSAPrivateKey:
    try:
        with open(path, "rb") as f:
            key = serialization.load_pem_private_key(f.read(), password=password)
    except OSError:
        raise PrivateKeyUnavailable(f"Cannot open private key file: {path}")
    except ValueError as e:
        raise PrivateKeyUnavailable(f"Cannot load private key {path}: {e}")
    if not isinstance(key, rsa.RSAPrivateKey):
        raise PrivateKeyUnavailable(f"Expected RSA private key in {path}, got {type(key).__name__}")
    return key


def generate_identity(bits: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def _coerce_envelope(envelope: EnvelopeInput) -> EncryptedEnvelope:
    if isinstance(envelope, EncryptedEnvelope):
        return envelope
    if isinstance(envelope, (bytes, bytearray, str)):
        try:
            envelope = json_loads(envelope)
        except (ValueError, UnicodeDecodeError):
            raise MalformedEnvelope(
                "Response was not valid JSON (possibly invalid CID or IPFS error)"
            )
    return EncryptedEnvelope.from_wire(envelope)


class HybridDecryptor:
    """
    Authenticates and decrypts envelopes with the configured private key.

    The private key and cipher parameters are resolved lazily on first use
    and cached. Reads of the cache run concurrently; ``reload`` swaps it under
    the lock.
    """

    def __init__(self, settings, private_key: Optional[rsa.RSAPrivateKey] = None):
        self._settings = settings
        self._lock = threading.Lock()
        self._private_key = private_key
        self._params: Optional[Tuple[int, padding.OAEP]] = None

    # --- Config cache --------------------------------------------------

    def reload(self, settings) -> None:
        with self._lock:
            self._settings = settings
            self._private_key = None
            self._params = None

    def _load(self) -> Tuple[rsa.RSAPrivateKey, int, padding.OAEP]:
        key, params = self._private_key, self._params
        if key is not None and params is not None:
            return key, params[0], params[1]

        with self._lock:
            settings = self._settings
            if self._params is None:
                cipher_bits = _check_cipher(settings.default_cipher)
                if settings.key_size != cipher_bits:
                    raise ConfigurationError(
                        f"key_size {settings.key_size} does not match cipher {settings.default_cipher}"
                    )
                self._params = (settings.key_size // 8, _oaep(settings.oaep_hash))
            if self._private_key is None:
                self._private_key = load_private_key(settings.private_key_file)
                logger.debug("Loaded private key from %s", settings.private_key_file)
            return self._private_key, self._params[0], self._params[1]

    # --- Decrypt -------------------------------------------------------

    def decrypt(self, envelope: EnvelopeInput) -> bytes:
        env = _coerce_envelope(envelope)
        private_key, key_len, oaep = self._load()

        try:
            key_material = private_key.decrypt(env.wrapped_key, oaep)
        except ValueError:
            raise AuthenticationFailure("Key unwrap failed (wrong private key?)")

        if len(key_material) < key_len:
            raise AuthenticationFailure(
                f"Unwrapped key is {len(key_material)} bytes, need {key_len}"
            )
        aes_key = key_material[:key_len]

        if len(env.auth_tag) != GCM_TAG_SIZE:
            raise AuthenticationFailure(f"GCM tag must be {GCM_TAG_SIZE} bytes")

        try:
            return AESGCM(aes_key).decrypt(env.nonce, env.data + env.auth_tag, None)
        except (InvalidTag, ValueError):
            raise AuthenticationFailure()

    def decrypt_and_parse(self, envelope: EnvelopeInput) -> Any:
        plaintext = self.decrypt(envelope)
        try:
            return json_loads(plaintext)
        except (ValueError, UnicodeDecodeError):
            raise InvalidPlaintext("Decrypted payload is not valid JSON", plaintext)


class HybridEncryptor:
    """
    Publisher-side counterpart of HybridDecryptor.
    """

    def __init__(self, public_key: rsa.RSAPublicKey, settings):
        key_bits = _check_cipher(settings.default_cipher)
        if settings.key_size != key_bits:
            raise ConfigurationError(
                f"key_size {settings.key_size} does not match cipher {settings.default_cipher}"
            )
        self._public_key = public_key
        self._key_len = settings.key_size // 8
        self._oaep = _oaep(settings.oaep_hash)

    def encrypt_bytes(self, plaintext: bytes) -> EncryptedEnvelope:
        key = os.urandom(self._key_len)
        nonce = os.urandom(GCM_NONCE_SIZE)

        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        return EncryptedEnvelope(
            data=sealed[:-GCM_TAG_SIZE],
            wrapped_key=self._public_key.encrypt(key, self._oaep),
            nonce=nonce,
            auth_tag=sealed[-GCM_TAG_SIZE:],
        )

    def encrypt(self, payload: Any) -> EncryptedEnvelope:
        return self.encrypt_bytes(json_dumps(payload).encode("utf-8"))
