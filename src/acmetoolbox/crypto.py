"""Cryptographic utilities for ACME protocol operations."""

import base64
import hashlib
import json
import re
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from acmetoolbox.exceptions import LogicError
from acmetoolbox.models import KeyPair

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

RSA_MIN_SIZE = 2048
RSA_MAX_SIZE = 4096

_CURVES: dict[int, ec.EllipticCurve] = {
    256: ec.SECP256R1(),
    384: ec.SECP384R1(),
}

_CURVE_PARAMS = {
    "secp256r1": ("P-256", 32, "ES256", hashes.SHA256),
    "secp384r1": ("P-384", 48, "ES384", hashes.SHA384),
}

_PEM_FRAMING = re.compile(r"-----(BEGIN|END)[^-]*-----")


def _to_key_pair(key: PrivateKey) -> KeyPair:
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = (
        key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )
    return KeyPair(public_key=public_pem, private_key=private_pem)


def generate_rsa_keys(key_size: int = 4096) -> KeyPair:
    """Generate an RSA key pair.

    Args:
        key_size: Key size in bits, between 2048 and 4096.

    Returns:
        PEM-encoded key pair (PKCS#8 private key, SubjectPublicKeyInfo public key).

    Raises:
        LogicError: If key_size is out of range.
    """
    if not RSA_MIN_SIZE <= key_size <= RSA_MAX_SIZE:
        raise LogicError(f"RSA key size must be between {RSA_MIN_SIZE} and {RSA_MAX_SIZE}, got {key_size}")

    key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )
    return _to_key_pair(key)


def generate_ec_keys(key_size: int = 256) -> KeyPair:
    """Generate an EC key pair on P-256 or P-384.

    Raises:
        LogicError: If key_size is not 256 or 384.
    """
    if key_size not in _CURVES:
        raise LogicError(f"EC key size must be one of {sorted(_CURVES)}, got {key_size}")

    return _to_key_pair(ec.generate_private_key(_CURVES[key_size]))


def load_private_key_pem(pem_data: str, password: bytes | None = None) -> PrivateKey:
    """Load a private key from PEM-encoded data.

    Args:
        pem_data: PEM-encoded private key string.
        password: Optional password for encrypted keys.

    Returns:
        RSA or ECDSA private key.

    Raises:
        ValueError: If PEM data is invalid or password is incorrect.
    """
    try:
        key = serialization.load_pem_private_key(
            pem_data.encode("utf-8"),
            password=password,
        )
    except ValueError as e:
        error_msg = str(e).lower()
        if "password" in error_msg or "decrypt" in error_msg:
            raise ValueError("Invalid password or encrypted key requires password") from e
        raise ValueError(f"Invalid PEM data: {e}") from e
    except TypeError as e:
        # TypeError is raised when encrypted key is loaded without password
        raise ValueError("Invalid password or encrypted key requires password") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Unsupported key type: {type(key).__name__}")

    return key


def create_csr(
    key: PrivateKey,
    common_name: str,
    domains: list[str],
) -> x509.CertificateSigningRequest:
    """Create a Certificate Signing Request (CSR).

    Args:
        key: Private key to sign the CSR.
        common_name: Subject common name.
        domains: Domain names for the subjectAltName extension.

    Returns:
        Certificate Signing Request.

    Raises:
        ValueError: If domains list is empty.
    """
    if not domains:
        raise ValueError("At least one domain is required")

    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )

    san = x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains])

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(san, critical=False)
    )

    return builder.sign(key, hashes.SHA256())


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Base64url decode, restoring any stripped padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def pem_to_der(pem: str) -> bytes:
    """Strip the PEM framing and whitespace from a single PEM block and decode it.

    Works for any block type (CERTIFICATE, CERTIFICATE REQUEST, ...).
    """
    body = _PEM_FRAMING.sub("", pem)
    return base64.b64decode("".join(body.split()))


def _int_to_base64url(n: int, length: int) -> str:
    """Convert an integer to base64url encoding with fixed length."""
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def _curve_params(key: ec.EllipticCurvePrivateKey) -> tuple[str, int, str, type[hashes.HashAlgorithm]]:
    curve_name = key.curve.name
    if curve_name not in _CURVE_PARAMS:
        raise ValueError(f"Unsupported curve: {curve_name}")
    return _CURVE_PARAMS[curve_name]


def get_jwk(key: PrivateKey) -> dict[str, str]:
    """Get the JWK (JSON Web Key) representation of the public half of a key."""
    if isinstance(key, rsa.RSAPrivateKey):
        public_numbers = key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "n": base64url_encode(
                public_numbers.n.to_bytes((public_numbers.n.bit_length() + 7) // 8, byteorder="big")
            ),
            "e": base64url_encode(
                public_numbers.e.to_bytes((public_numbers.e.bit_length() + 7) // 8, byteorder="big")
            ),
        }

    crv, coord_size, _, _ = _curve_params(key)
    public_numbers = key.public_key().public_numbers()
    return {
        "kty": "EC",
        "crv": crv,
        "x": _int_to_base64url(public_numbers.x, coord_size),
        "y": _int_to_base64url(public_numbers.y, coord_size),
    }


def key_thumbprint(key: PrivateKey) -> str:
    """Compute the JWK thumbprint of a key (RFC 7638).

    Args:
        key: Private key to compute thumbprint for.

    Returns:
        Base64url-encoded SHA-256 thumbprint.
    """
    jwk = get_jwk(key)

    # Only the required members take part in the thumbprint
    if jwk["kty"] == "RSA":
        canonical = {"e": jwk["e"], "kty": "RSA", "n": jwk["n"]}
    else:
        canonical = {"crv": jwk["crv"], "kty": "EC", "x": jwk["x"], "y": jwk["y"]}

    json_bytes = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64url_encode(hashlib.sha256(json_bytes).digest())


def sign_jws(
    key: PrivateKey,
    payload: dict[str, Any] | str,
    url: str,
    nonce: str | None = None,
    kid: str | None = None,
) -> dict[str, str]:
    """Sign a payload as a flattened JWS (JSON Web Signature) for ACME.

    Args:
        key: Private key to sign with.
        payload: Payload to sign (dict for JSON, empty string for POST-as-GET).
        url: URL of the ACME endpoint.
        nonce: Replay nonce (omitted for the inner JWS of a key rollover).
        kid: Account URL. If None, the public JWK is embedded instead.

    Returns:
        ``{"protected": ..., "payload": ..., "signature": ...}``
    """
    if isinstance(key, rsa.RSAPrivateKey):
        alg = "RS256"
    else:
        _, coord_size, alg, hash_cls = _curve_params(key)

    protected: dict[str, Any] = {
        "alg": alg,
        "url": url,
    }

    if nonce is not None:
        protected["nonce"] = nonce

    if kid:
        protected["kid"] = kid
    else:
        protected["jwk"] = get_jwk(key)

    protected_b64 = base64url_encode(json.dumps(protected, separators=(",", ":")).encode("utf-8"))

    if payload == "":
        payload_b64 = ""
    else:
        payload_b64 = base64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    signing_input = f"{protected_b64}.{payload_b64}".encode()

    if isinstance(key, rsa.RSAPrivateKey):
        signature = key.sign(
            signing_input,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    else:
        der_signature = key.sign(signing_input, ec.ECDSA(hash_cls()))
        r, s = decode_dss_signature(der_signature)

        # JWS wants fixed-size r||s, not DER
        signature = r.to_bytes(coord_size, byteorder="big") + s.to_bytes(coord_size, byteorder="big")

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }
