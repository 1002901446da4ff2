"""Faster-checkout token vault.

Reusable card tokens returned by the hosted-page gateway are encrypted at
rest with AES-256-GCM and de-duplicated by a SHA-256 digest of the plaintext.
Nothing here is on the critical payment path: ``capture`` and
``store_from_response`` never raise.
"""

import base64
import datetime as dt
import hashlib
import os
from typing import TYPE_CHECKING, Any, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.models import (
    CheckoutSession,
    Gateway,
    NormalizedOutcome,
    PaymentToken,
    PaymentTokenSummary,
    TokenNotFound,
    TokenStatus,
)
from shared.utils.logging import get_logger, log_payment_operation

from .gateway_config import load_token_encryption_key
from .gateways.benefit import extract_token
from .signing import sha256_hex

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16

CARD_NUMBER_FIELDS = ("cardNumber", "card", "cardNo", "pan")
CARD_TYPE_FIELDS = ("cardType", "cardBrand", "brand", "cardTypeName")
LAST4_FIELDS = ("last4", "lastFour")
REVOKED_TOKEN_STATUSES = frozenset({"DELETED", "REVOKED"})


class TokenCryptoError(Exception):
    """Token ciphertext could not be produced or authenticated."""


def _derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_token(token: str, secret: str) -> str:
    """Encrypt to base64(iv | tag | ciphertext)."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(secret)).encrypt(iv, token.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt_token(encrypted: str, secret: str) -> str:
    """Reverse of ``encrypt_token``.

    Raises:
        TokenCryptoError: If the blob is malformed or fails authentication.
    """
    try:
        combined = base64.b64decode(encrypted, validate=True)
    except ValueError as e:
        raise TokenCryptoError("token blob is not base64") from e
    if len(combined) <= IV_LENGTH + TAG_LENGTH:
        raise TokenCryptoError("token blob is truncated")

    iv = combined[:IV_LENGTH]
    tag = combined[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
    ciphertext = combined[IV_LENGTH + TAG_LENGTH :]
    try:
        plain = AESGCM(_derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise TokenCryptoError("token blob failed authentication") from e
    return plain.decode("utf-8")


def _first(fields: Mapping[str, Any], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = fields.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def card_metadata(fields: Mapping[str, Any]) -> dict[str, str | None]:
    """Alias, last four digits and card type from a gateway response."""
    number = _first(fields, CARD_NUMBER_FIELDS)
    card_type = _first(fields, CARD_TYPE_FIELDS)
    if card_type:
        card_type = card_type.upper()
    elif number:
        card_type = {"4": "VISA", "5": "MASTERCARD", "3": "AMEX"}.get(number[0])

    last4 = None
    if number and len(number) >= 4:
        last4 = number[-4:]
    elif _first(fields, LAST4_FIELDS):
        last4 = _first(fields, LAST4_FIELDS)[-4:]

    alias = f"{card_type or 'Card'} ****{last4}" if last4 else None
    return {"card_alias": alias, "last_4_digits": last4, "card_type": card_type}


class TokenVault:
    """Encrypted storage of reusable card tokens."""

    TOKENS_TABLE = "payment-tokens"

    def __init__(self, db: "DynamoDBService", secret: str | None = None) -> None:
        """Initialize token vault.

        Args:
            db: DynamoDB service instance
            secret: Encryption secret; loaded from configuration on first use
        """
        self.db = db
        self._secret = secret

    @property
    def secret(self) -> str:
        if self._secret is None:
            self._secret = load_token_encryption_key()
        return self._secret

    def capture(self, session: CheckoutSession, outcome: NormalizedOutcome) -> None:
        """Store or revoke the token carried by a successful hosted-page outcome."""
        if outcome.gateway is not Gateway.BENEFIT:
            return
        fields = outcome.raw_fields
        token = extract_token(fields)
        if not token:
            return

        token_status = str(fields.get("tokenStatus") or "").upper()
        if token_status in REVOKED_TOKEN_STATUSES:
            self.revoke_by_hash(sha256_hex(token))
            return

        self.store_from_response(
            session.user_id,
            outcome.correlation.payment_id or outcome.correlation.track_id,
            fields,
        )

    def store_from_response(
        self,
        user_id: str,
        payment_id: str | None,
        response_fields: Mapping[str, Any],
    ) -> PaymentToken | None:
        """Encrypt and store the response's token.

        Best effort: every failure is logged and reported as None.

        Returns:
            The stored token, the already-stored duplicate, or None
        """
        try:
            return self._store(user_id, payment_id, response_fields)
        except Exception as e:  # noqa: BLE001 - vault errors never reach the caller
            log_payment_operation(
                logger,
                "store_token",
                status="failed",
                error=str(e),
                user_id=user_id,
                payment_id=payment_id,
            )
            return None

    def list_tokens(self, user_id: str) -> list[PaymentTokenSummary]:
        """Active tokens for ``user_id``, default first then newest first. Metadata only."""
        tokens = [
            token
            for token in self._tokens_for_user(user_id)
            if token.status is TokenStatus.ACTIVE
        ]
        tokens.sort(key=lambda t: (not t.is_default, -t.created_at.timestamp()))
        return [
            PaymentTokenSummary(
                token_id=t.token_id,
                card_alias=t.card_alias,
                last_4_digits=t.last_4_digits,
                card_type=t.card_type,
                is_default=t.is_default,
                created_at=t.created_at,
            )
            for t in tokens
        ]

    def get_token_for_user(self, token_id: str, user_id: str) -> str:
        """Decrypt an active token owned by ``user_id``.

        Raises:
            TokenNotFound: If the token does not exist, is deleted, belongs
                to another user or cannot be decrypted.
        """
        token = self._get(token_id)
        if token is None or token.user_id != user_id or token.status is not TokenStatus.ACTIVE:
            raise TokenNotFound({"token_id": token_id})
        try:
            return decrypt_token(token.encrypted_token, self.secret)
        except TokenCryptoError as e:
            logger.error("Stored token %s could not be decrypted: %s", token_id, e)
            raise TokenNotFound({"token_id": token_id}) from e

    def delete_token(self, token_id: str, user_id: str) -> None:
        """Soft-delete a token owned by ``user_id``.

        Raises:
            TokenNotFound: If no active token with this id belongs to the user.
        """
        attrs = self.db.update_item(
            self.TOKENS_TABLE,
            {"token_id": token_id},
            "SET #status = :deleted, is_default = :false, updated_at = :now",
            {
                ":deleted": TokenStatus.DELETED.value,
                ":active": TokenStatus.ACTIVE.value,
                ":false": False,
                ":user_id": user_id,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#status": "status"},
            condition_expression="#status = :active AND user_id = :user_id",
        )
        if attrs is None:
            raise TokenNotFound({"token_id": token_id})
        logger.info("Payment token %s deleted by user %s", token_id, user_id)

    def revoke_by_hash(self, token_hash: str) -> int:
        """Soft-delete every active token with ``token_hash``.

        Returns:
            Number of tokens revoked
        """
        revoked = 0
        for item in self.db.query_by_gsi(
            self.TOKENS_TABLE, "token_hash-index", "token_hash", token_hash
        ):
            attrs = self.db.update_item(
                self.TOKENS_TABLE,
                {"token_id": item["token_id"]},
                "SET #status = :deleted, is_default = :false, updated_at = :now",
                {
                    ":deleted": TokenStatus.DELETED.value,
                    ":active": TokenStatus.ACTIVE.value,
                    ":false": False,
                    ":now": dt.datetime.now(dt.UTC).isoformat(),
                },
                {"#status": "status"},
                condition_expression="#status = :active",
            )
            if attrs is not None:
                revoked += 1
        if revoked:
            logger.info("Revoked %d payment token(s) on gateway signal", revoked)
        return revoked

    # Internals

    def _store(
        self,
        user_id: str,
        payment_id: str | None,
        fields: Mapping[str, Any],
    ) -> PaymentToken | None:
        token = extract_token(fields)
        if not token:
            return None
        token_hash = sha256_hex(token)

        existing = self._tokens_for_user(user_id)
        for candidate in existing:
            if candidate.status is TokenStatus.ACTIVE and candidate.token_hash == token_hash:
                return candidate
            if payment_id and candidate.payment_id == payment_id:
                return candidate

        now = dt.datetime.now(dt.UTC)
        stored = PaymentToken(
            # Same user + same token always maps to the same row
            token_id="TOK-" + sha256_hex(f"{user_id}:{token_hash}")[:24],
            user_id=user_id,
            encrypted_token=encrypt_token(token, self.secret),
            token_hash=token_hash,
            payment_id=payment_id,
            is_default=not any(t.status is TokenStatus.ACTIVE for t in existing),
            status=TokenStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            **card_metadata(fields),
        )
        # A deleted row with the same id is reactivated
        inserted = self.db.put_item(
            self.TOKENS_TABLE,
            self._token_to_item(stored),
            condition_expression="attribute_not_exists(token_id) OR #status <> :active",
            expression_attribute_names={"#status": "status"},
            expression_attribute_values={":active": TokenStatus.ACTIVE.value},
        )
        if not inserted:
            return self._get(stored.token_id)

        log_payment_operation(
            logger,
            "store_token",
            status="stored",
            user_id=user_id,
            payment_id=payment_id,
            card_type=stored.card_type,
        )
        return stored

    def _get(self, token_id: str) -> PaymentToken | None:
        item = self.db.get_item(self.TOKENS_TABLE, {"token_id": token_id})
        return self._item_to_token(item) if item else None

    def _tokens_for_user(self, user_id: str) -> list[PaymentToken]:
        items = self.db.query_by_gsi(self.TOKENS_TABLE, "user_id-index", "user_id", user_id)
        return [self._item_to_token(item) for item in items]

    def _token_to_item(self, token: PaymentToken) -> dict[str, Any]:
        """Convert PaymentToken model to DynamoDB item (None values omitted)."""
        item = token.model_dump(mode="json", exclude_none=True)
        return item

    def _item_to_token(self, item: dict[str, Any]) -> PaymentToken:
        """Convert DynamoDB item to PaymentToken model."""
        return PaymentToken(
            token_id=item["token_id"],
            user_id=item["user_id"],
            encrypted_token=item["encrypted_token"],
            token_hash=item["token_hash"],
            payment_id=item.get("payment_id"),
            card_alias=item.get("card_alias"),
            last_4_digits=item.get("last_4_digits"),
            card_type=item.get("card_type"),
            is_default=bool(item.get("is_default", False)),
            status=TokenStatus(item.get("status", TokenStatus.ACTIVE.value)),
            created_at=item["created_at"],
            updated_at=item["updated_at"],
        )
