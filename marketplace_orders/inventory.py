"""SQLAlchemy inventory ledger over the shared ``products.quantity`` counter.

Stock only ever changes through the two statements below, both issued on
the caller's session so they commit or roll back together with the order
status change they belong to. There is no read-modify-write: the
decrement is a single conditional ``UPDATE ... WHERE quantity >= :qty``,
so two concurrent confirmations against the same row cannot both succeed
when stock only covers one of them.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from .domain import InventoryPort
from .models import Product

logger = logging.getLogger("marketplace_orders.inventory")


class InventoryLedger(InventoryPort):
    """Inventory port bound to an open session.

    Args:
        session: Session of the surrounding unit of work. The ledger never
            commits or rolls back on its own.
    """

    def __init__(self, session: Session):
        self.session = session

    def try_deduct(self, product_id: uuid.UUID, quantity: int) -> bool:
        """Decrement stock if at least ``quantity`` units remain.

        Args:
            product_id: Product whose stock is deducted.
            quantity: Positive number of units.

        Returns:
            bool: True when the row matched and was decremented, False when
            the product is unknown or has fewer than ``quantity`` units.

        Raises:
            ValueError: If ``quantity`` is not positive.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.quantity >= quantity)
            .values(quantity=Product.quantity - quantity, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        matched = self.session.execute(stmt).rowcount == 1
        if not matched:
            logger.info(
                "stock deduction rejected",
                extra={"product_id": str(product_id), "quantity": quantity},
            )
        return matched

    def restore(self, product_id: uuid.UUID, quantity: int) -> None:
        """Add ``quantity`` units back to a product's stock.

        Raises:
            ValueError: If ``quantity`` is not positive.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(quantity=Product.quantity + quantity, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
