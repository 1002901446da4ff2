"""Atomic stock reservation and release against ``products.available_quantity``.

Every mutation is a single guarded DynamoDB update; no caller reads the
quantity and writes it back.
"""

from typing import TYPE_CHECKING, Iterable

from shared.models import InsufficientStock, ProductNotFound, SessionItem, ValidationError
from shared.utils.logging import get_logger, log_payment_operation

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class StockLedger:
    """Reserve and release per-product available quantity."""

    PRODUCTS_TABLE = "products"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize stock ledger.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def reserve(self, product_id: str, quantity: int) -> int:
        """Decrement available stock if at least ``quantity`` is available.

        Args:
            product_id: Product to reserve
            quantity: Units to take (must be positive)

        Returns:
            The new available quantity

        Raises:
            ValidationError: If quantity is not positive
            ProductNotFound: If the product does not exist
            InsufficientStock: If fewer than ``quantity`` units are available
        """
        if quantity <= 0:
            raise ValidationError({"product_id": product_id, "quantity": str(quantity)})

        attrs = self.db.update_item(
            self.PRODUCTS_TABLE,
            {"product_id": product_id},
            "SET available_quantity = available_quantity - :qty",
            {":qty": quantity},
            condition_expression="attribute_exists(product_id) AND available_quantity >= :qty",
        )
        if attrs is None:
            # Condition failed: tell a missing product apart from a short one
            product = self.db.get_item(self.PRODUCTS_TABLE, {"product_id": product_id})
            if product is None:
                raise ProductNotFound({"product_id": product_id})
            raise InsufficientStock(
                {
                    "product_id": product_id,
                    "requested": str(quantity),
                    "available": str(product.get("available_quantity", 0)),
                }
            )
        return int(attrs["available_quantity"])

    def release(self, product_id: str, quantity: int) -> int | None:
        """Increment available stock.

        A product deleted since the reservation cannot take stock back; that
        is logged and reported as None rather than raised, so a wider
        rollback can carry on.

        Returns:
            The new available quantity, or None if the product no longer exists
        """
        if quantity <= 0:
            return None

        attrs = self.db.update_item(
            self.PRODUCTS_TABLE,
            {"product_id": product_id},
            "SET available_quantity = available_quantity + :qty",
            {":qty": quantity},
            condition_expression="attribute_exists(product_id)",
        )
        if attrs is None:
            logger.error(
                "Stock release skipped: product %s no longer exists (qty=%d)",
                product_id,
                quantity,
            )
            return None
        return int(attrs["available_quantity"])

    def reserve_batch(self, items: Iterable[SessionItem]) -> None:
        """Reserve every item in order, undoing earlier reservations on failure.

        Raises:
            InsufficientStock / ProductNotFound / ValidationError: For the first
                item that could not be reserved; ``details["line"]`` is its
                zero-based position.
        """
        reserved: list[SessionItem] = []
        for index, item in enumerate(items):
            try:
                self.reserve(item.product_id, item.quantity)
            except (InsufficientStock, ProductNotFound, ValidationError) as e:
                log_payment_operation(
                    logger,
                    "reserve_batch",
                    status="rolled_back",
                    error=str(e),
                    product_id=item.product_id,
                    released_lines=len(reserved),
                )
                self.release_batch(reserved)
                e.details = {**(e.details or {}), "line": str(index)}
                raise
            except Exception:
                self.release_batch(reserved)
                raise
            reserved.append(item)

    def release_batch(self, items: Iterable[SessionItem]) -> list[str]:
        """Return every item's quantity to stock.

        Errors are logged per item and never raised.

        Returns:
            Product ids whose release did not apply
        """
        failed: list[str] = []
        for item in items:
            try:
                if self.release(item.product_id, item.quantity) is None:
                    failed.append(item.product_id)
            except Exception as e:  # noqa: BLE001 - compensating path must finish
                logger.exception("Stock release failed for %s: %s", item.product_id, e)
                failed.append(item.product_id)
        return failed

    def missing_products(self, product_ids: Iterable[str]) -> list[str]:
        """Product ids from ``product_ids`` that no longer exist in the catalog."""
        wanted = list(dict.fromkeys(product_ids))
        found = {
            item["product_id"]
            for item in self.db.batch_get(
                self.PRODUCTS_TABLE, [{"product_id": pid} for pid in wanted]
            )
        }
        return [pid for pid in wanted if pid not in found]

    def available(self, product_id: str) -> int | None:
        product = self.db.get_item(self.PRODUCTS_TABLE, {"product_id": product_id})
        return int(product["available_quantity"]) if product else None
