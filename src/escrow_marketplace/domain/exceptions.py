"""Domain exceptions for the Escrow Marketplace.

These exceptions are framework-agnostic and represent business rule violations.
Raising any of them inside a ledger call reverts the whole call.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Authorization Errors ---


class AuthorizationError(MarketplaceError):
    """Raised when the caller is not the party or role an operation requires."""

    def __init__(self, caller: str, required: str) -> None:
        super().__init__(
            message=f"Caller {caller} is not authorized (requires {required})",
            code="UNAUTHORIZED",
        )
        self.caller = caller
        self.required = required


# --- State Machine Errors ---


class StateError(MarketplaceError):
    """Raised when an operation is invalid for the current status."""

    def __init__(self, message: str, code: str = "INVALID_STATE") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(StateError):
    """Raised when an attempted state transition is not allowed.

    Example: OPEN -> accept (a sale needs a buyer before it can settle)
    """

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted_event} from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event


# --- Value Errors ---


class InvalidAmountError(MarketplaceError, ValueError):
    """Raised for non-positive prices, negative portions or bids below the price."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_AMOUNT")


class InsufficientFundsError(MarketplaceError, ValueError):
    """Raised when a balance cannot cover a transfer or a price."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            message=f"Insufficient funds: required {required}, available {available}",
            code="INSUFFICIENT_FUNDS",
        )
        self.required = required
        self.available = available


class InvalidKeyError(MarketplaceError, ValueError):
    """Raised when an administrative key argument is malformed for the active policy."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_KEY")


class DuplicateSaleError(MarketplaceError, ValueError):
    """Raised when post_sale reuses an id that is still mapped."""

    def __init__(self, sale_id: int) -> None:
        super().__init__(
            message=f"Sale id already registered: {sale_id}",
            code="DUPLICATE_SALE",
        )
        self.sale_id = sale_id


# --- Lookup Errors ---


class SaleNotFoundError(MarketplaceError, LookupError):
    """Raised when a sale id is not mapped in the registry."""

    def __init__(self, sale_id: int) -> None:
        super().__init__(
            message=f"Sale not found: {sale_id}",
            code="SALE_NOT_FOUND",
        )
        self.sale_id = sale_id


class UnknownContractError(MarketplaceError, LookupError):
    """Raised when an address holds no contract or the method is not an entry point."""

    def __init__(self, address: str, method: str | None = None) -> None:
        target = f"{address}.{method}" if method else address
        super().__init__(
            message=f"Unknown contract entry point: {target}",
            code="UNKNOWN_CONTRACT",
        )
        self.address = address
        self.method = method


# --- Instantiation Errors ---


class InstantiationError(MarketplaceError):
    """Raised when the registry fails to create a new escrow instance."""

    def __init__(self, template: str, sale_id: int) -> None:
        super().__init__(
            message=f"Failed to instantiate template {template} for sale {sale_id}",
            code="INSTANTIATION_FAILED",
        )
        self.template = template
        self.sale_id = sale_id


# --- Idempotency Errors ---


class DuplicateOperationError(MarketplaceError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
