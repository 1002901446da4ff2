"""Signing and encryption primitives for the three payment gateways.

Every function here is pure. The canonical strings are external contracts:
a single character of difference (a missing decimal place, a space, a
different sort order) yields a digest the gateway silently rejects.

Hosted invoice (EazyPay Checkout):
    invoice  HMAC-SHA256-hex(timestamp + currency + amount + appId)
    query    HMAC-SHA256-hex(timestamp + appId)
    webhook  HMAC-SHA256-hex(timestamp + nonce + globalTransactionsId + "true"|"false")

Hosted page (BENEFIT PG):
    trandata = HEX(AES-256-CBC(encodeURIComponent(json), resource_key, IV)),
    PKCS7 padded, uppercase hex.

In-app wallet (BenefitPay):
    secure_hash = BASE64(HMAC-SHA256(secret, 'k1="v1",k2="v2",...'))
    over every parameter except lang / hashedString / secure_hash, sorted by
    key then value.
"""

import base64
import binascii
import hashlib
import hmac
import json
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping
from urllib.parse import quote, unquote

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from shared.models.errors import DecryptionError, ValidationError

BENEFIT_IV = b"PGKEYENCDECIVSPC"
WALLET_EXCLUDED_KEYS = frozenset({"lang", "hashedString", "secure_hash"})

_HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")
# encodeURIComponent leaves these unescaped besides alphanumerics and -_.
_URI_COMPONENT_SAFE = "!~*'()"
_THREE_PLACES = Decimal("0.001")


def format_amount(amount: Decimal | str | int | float) -> str:
    """Format an amount with exactly three decimal places ("2" -> "2.000").

    Raises:
        ValidationError: If the value is not a finite number.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError({"amount": str(amount)}) from e
    if not value.is_finite():
        raise ValidationError({"amount": str(amount)})
    return format(value.quantize(_THREE_PLACES, rounding=ROUND_HALF_UP), "f")


def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def hmac_sha256_base64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def digests_match(expected: str, provided: str | None) -> bool:
    """Constant-time digest comparison; a missing digest never matches."""
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


# === Hosted invoice ===


def eazypay_invoice_message(timestamp: str, currency: str, amount: str, app_id: str) -> str:
    return f"{timestamp}{currency}{amount}{app_id}"


def eazypay_invoice_hash(
    secret: str, timestamp: str, currency: str, amount: str, app_id: str
) -> str:
    """Secret-Hash header for createInvoice.

    ``amount`` must already be formatted with :func:`format_amount`.
    """
    return hmac_sha256_hex(secret, eazypay_invoice_message(timestamp, currency, amount, app_id))


def eazypay_query_hash(secret: str, timestamp: str, app_id: str) -> str:
    return hmac_sha256_hex(secret, f"{timestamp}{app_id}")


def eazypay_webhook_hash(
    secret: str, timestamp: str, nonce: str, global_transactions_id: str, is_paid: bool
) -> str:
    return hmac_sha256_hex(
        secret,
        f"{timestamp}{nonce}{global_transactions_id}{'true' if is_paid else 'false'}",
    )


# === Hosted page trandata ===


def build_trandata(fields: Mapping[str, Any]) -> str:
    """Serialize trandata fields as the compact one-element JSON array BENEFIT expects."""
    return json.dumps([dict(fields)], separators=(",", ":"), ensure_ascii=False)


def _benefit_cipher(resource_key: str) -> Cipher:
    key = resource_key.encode("utf-8")
    if len(key) != 32:
        raise DecryptionError({"message": f"resource key must be 32 bytes, got {len(key)}"})
    return Cipher(algorithms.AES(key), modes.CBC(BENEFIT_IV))


def encrypt_trandata(plain: str, resource_key: str) -> str:
    """Encrypt plain trandata into uppercase hex."""
    encoded = quote(plain, safe=_URI_COMPONENT_SAFE).encode("utf-8")
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(encoded) + padder.finalize()
    encryptor = _benefit_cipher(resource_key).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return ciphertext.hex().upper()


def decrypt_trandata(encrypted_hex: str, resource_key: str) -> str:
    """Decrypt hex trandata back into its plain (URL-decoded) string.

    Fails closed: anything that is not whole AES blocks of hex with valid
    PKCS7 padding and UTF-8 content raises.

    Raises:
        DecryptionError: On any malformed, truncated or foreign ciphertext.
    """
    text = (encrypted_hex or "").strip()
    if not text or not _HEX_RE.match(text):
        raise DecryptionError({"message": "trandata is not hex"})
    if len(text) % 32:
        raise DecryptionError({"message": "trandata is not a whole number of blocks"})

    try:
        ciphertext = binascii.unhexlify(text)
        decryptor = _benefit_cipher(resource_key).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        encoded = unpadder.update(padded) + unpadder.finalize()
        return unquote(encoded.decode("utf-8"), errors="strict")
    except (ValueError, binascii.Error) as e:
        # bad padding and invalid UTF-8 both surface as ValueError
        raise DecryptionError({"message": "trandata could not be decrypted"}) from e


def parse_trandata(plain: str) -> dict[str, Any]:
    """Parse decrypted trandata, which is either a JSON array of one object or an object.

    Raises:
        DecryptionError: If the plaintext is not the expected JSON shape.
    """
    try:
        data = json.loads(plain)
    except json.JSONDecodeError as e:
        raise DecryptionError({"message": "trandata is not JSON"}) from e
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        raise DecryptionError({"message": "trandata has an unexpected shape"})
    return data


# === In-app wallet ===


def wallet_canonical_string(params: Mapping[str, Any]) -> str:
    """Build the key="value" string the wallet hash is computed over."""
    # Code-point order; equals the SDK's locale order for the keys we send
    pairs = sorted(
        (str(key).strip(), str(value).strip())
        for key, value in params.items()
        if key not in WALLET_EXCLUDED_KEYS
    )
    return ",".join(f'{key}="{value}"' for key, value in pairs)


def wallet_secure_hash(params: Mapping[str, Any], secret: str) -> str:
    return hmac_sha256_base64(secret, wallet_canonical_string(params))


def verify_wallet_hash(params: Mapping[str, Any], secret: str) -> bool:
    """Recompute ``secure_hash`` over the other parameters and compare."""
    provided = params.get("secure_hash")
    return digests_match(wallet_secure_hash(params, secret), str(provided) if provided else None)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
