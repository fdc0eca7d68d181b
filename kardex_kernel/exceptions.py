"""
Typed exception hierarchy for the kardex kernel.

Every error is a typed class with a machine-readable ``code`` class attribute
and structured attributes, so callers catch by type and report by field
instead of parsing messages.

    KardexKernelError (base)
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- LotNotFoundError
    |   +-- LotInactiveError
    |   +-- StockUnitNotFoundError
    |   +-- OutOfOrderMovementError
    |   +-- InvalidMovementError
    |
    +-- PeriodError
    |   +-- ClosedPeriodError
    |   +-- RetroactiveLimitExceededError
    |
    +-- CatalogError
    |   +-- ProductNotFoundError
    |   +-- WarehouseNotFoundError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |
    +-- CascadeError
        +-- CascadeFailureError

Category        | Code                        | When Raised
----------------|-----------------------------|------------------------------------------
Inventory       | INSUFFICIENT_STOCK          | Requested qty exceeds eligible lot qty
                | LOT_NOT_FOUND               | Lot ID doesn't exist
                | LOT_INACTIVE                | Lot was retired
                | STOCK_UNIT_NOT_FOUND        | No stock unit for id / product+warehouse
                | OUT_OF_ORDER_MOVEMENT       | record() called with a retroactive date
                | INVALID_MOVEMENT            | Non-positive quantity, negative cost, ...
----------------|-----------------------------|------------------------------------------
Period          | CLOSED_PERIOD               | Date outside the owner's open window
                | RETROACTIVE_LIMIT_EXCEEDED  | Date older than the configured depth
----------------|-----------------------------|------------------------------------------
Catalog         | PRODUCT_NOT_FOUND           | Unknown product on unit creation
                | WAREHOUSE_NOT_FOUND         | Unknown warehouse on unit creation
----------------|-----------------------------|------------------------------------------
Document        | DOCUMENT_NOT_FOUND          | Document ID doesn't exist
----------------|-----------------------------|------------------------------------------
Cascade         | CASCADE_FAILURE             | Per-unit failure during recalculation

Nothing in the kernel retries automatically: the engine is deterministic, so a
retry without changed input reproduces the same error.
"""


class KardexKernelError(Exception):
    """
    Base exception for all kardex kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "KARDEX_KERNEL_ERROR"


# Inventory-related exceptions


class InventoryError(KardexKernelError):
    """Base exception for stock, lot and movement errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """
    Requested quantity exceeds the active lot quantity at the relevant
    historical point. Recoverable by the caller; never retried.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        requested_quantity: str,
        available_quantity: str,
        stock_unit_id: str | None = None,
        as_of_date: str | None = None,
    ):
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        self.stock_unit_id = stock_unit_id
        self.as_of_date = as_of_date
        where = f" for stock unit {stock_unit_id}" if stock_unit_id else ""
        when = f" at {as_of_date}" if as_of_date else ""
        super().__init__(
            f"Insufficient stock{where}{when}: "
            f"requested {requested_quantity}, available {available_quantity}"
        )


class LotNotFoundError(InventoryError):
    """Lot with given ID was not found."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class LotInactiveError(InventoryError):
    """Lot has been retired and cannot be consumed or written off."""

    code: str = "LOT_INACTIVE"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot {lot_id} is inactive")


class StockUnitNotFoundError(InventoryError):
    """No stock unit exists for the given identity."""

    code: str = "STOCK_UNIT_NOT_FOUND"

    def __init__(
        self,
        stock_unit_id: str | None = None,
        product_id: str | None = None,
        warehouse_id: str | None = None,
    ):
        self.stock_unit_id = stock_unit_id
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        if stock_unit_id is not None:
            detail = stock_unit_id
        else:
            detail = f"product={product_id} warehouse={warehouse_id}"
        super().__init__(f"Stock unit not found: {detail}")


class OutOfOrderMovementError(InventoryError):
    """
    A movement was recorded with a date earlier than movements already
    recorded for the unit. Such movements must go through the retroactive
    recalculation path.
    """

    code: str = "OUT_OF_ORDER_MOVEMENT"

    def __init__(self, stock_unit_id: str, effective_date: str, latest_date: str):
        self.stock_unit_id = stock_unit_id
        self.effective_date = effective_date
        self.latest_date = latest_date
        super().__init__(
            f"Movement dated {effective_date} precedes movements up to "
            f"{latest_date} on stock unit {stock_unit_id}"
        )


class InvalidMovementError(InventoryError):
    """Movement request violates a basic quantity/cost rule."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid movement: {reason}")


# Period-related exceptions


class PeriodError(KardexKernelError):
    """Base exception for accounting-period policy violations."""

    code: str = "PERIOD_ERROR"


class ClosedPeriodError(PeriodError):
    """Effective date falls outside the owner's open accounting-period window."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, owner_id: str, effective_date: str, reason: str | None = None):
        self.owner_id = owner_id
        self.effective_date = effective_date
        self.reason = reason
        suffix = f": {reason}" if reason else ""
        super().__init__(
            f"Date {effective_date} is not in an open period for owner {owner_id}{suffix}"
        )


class RetroactiveLimitExceededError(PeriodError):
    """Effective date is older than the configured retroactive depth."""

    code: str = "RETROACTIVE_LIMIT_EXCEEDED"

    def __init__(self, owner_id: str, effective_date: str, reason: str | None = None):
        self.owner_id = owner_id
        self.effective_date = effective_date
        self.reason = reason
        suffix = f": {reason}" if reason else ""
        super().__init__(
            f"Retroactive date {effective_date} exceeds the allowed depth "
            f"for owner {owner_id}{suffix}"
        )


# Catalog-related exceptions


class CatalogError(KardexKernelError):
    """Base exception for product/warehouse catalog lookups."""

    code: str = "CATALOG_ERROR"


class ProductNotFoundError(CatalogError):
    """Product does not exist in the product catalog."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class WarehouseNotFoundError(CatalogError):
    """Warehouse does not exist in the warehouse catalog."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


# Document-related exceptions


class DocumentError(KardexKernelError):
    """Base exception for document collaborator errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


# Cascade-related exceptions


class CascadeError(KardexKernelError):
    """Base exception for retroactive recalculation errors."""

    code: str = "CASCADE_ERROR"


class CascadeFailureError(CascadeError):
    """
    A stock unit's cascade failed for a reason that is not itself a typed
    kernel error (e.g. a database error inside the unit's savepoint).
    """

    code: str = "CASCADE_FAILURE"

    def __init__(self, stock_unit_id: str, reason: str):
        self.stock_unit_id = stock_unit_id
        self.reason = reason
        super().__init__(f"Cascade failed for stock unit {stock_unit_id}: {reason}")
