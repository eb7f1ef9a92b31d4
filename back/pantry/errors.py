from decimal import Decimal


class PantryError(Exception):
    """Base class for domain errors surfaced to API callers"""
    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(PantryError):
    """Referenced entity does not exist or belongs to another tenant"""
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found",
            {"entity": entity, "id": entity_id} if entity_id is not None else None,
        )


class ConflictError(PantryError):
    """Duplicate name within a tenant"""
    code = "conflict"
    status_code = 409


class ValidationError(PantryError):
    code = "validation_error"
    status_code = 422


class InsufficientStockError(PantryError):
    """Raised when usage or spoilage exceeds what remains in a lot"""
    code = "insufficient_stock"
    status_code = 400

    def __init__(self, lot_id: int, requested: Decimal, available: Decimal):
        self.lot_id = lot_id
        self.requested = requested
        self.available = available
        super().__init__(
            "Insufficient stock available",
            {
                "ingredient_stock_id": lot_id,
                "requested": str(requested),
                "available": str(available),
            },
        )
