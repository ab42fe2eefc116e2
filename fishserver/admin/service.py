"""Admin service: configuration and the player and wallet operations behind the admin API."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger("fishserver.admin")

Reply = tuple[dict[str, Any], int]

_ID_PATTERN = re.compile(r"[0-9]+")
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_MAX_ID = 2**32 - 1
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
_MOCK_TIME = "2024-01-01T00:00:00Z"

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass
class DebugConfig:
    enable_pprof: bool = False
    pprof_auth: bool = False
    pprof_auth_key: str = ""
    enable_web_debug: bool = False
    enable_sql_debug: bool = False


@dataclass
class SecurityConfig:
    enable_csrf: bool = False
    enable_secure_headers: bool = False


@dataclass
class RateLimitConfig:
    enable: bool = False


@dataclass
class CorsConfig:
    allow_origins: list[str] = field(default_factory=list)


@dataclass
class AdminConfig:
    """The parts of the server configuration the admin API looks at."""

    environment: str = ""
    debug: DebugConfig | None = None
    security: SecurityConfig | None = None
    rate_limit: RateLimitConfig | None = None
    cors: CorsConfig | None = None


@dataclass
class PlayerResponse:
    id: int
    username: str
    email: str
    status: int
    created_at: str
    updated_at: str
    wallets_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.wallets_count:
            data["wallets_count"] = self.wallets_count
        return data


@dataclass
class WalletResponse:
    id: int
    user_id: int
    balance: float
    currency: str
    status: int
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance": self.balance,
            "currency": self.currency,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TransactionResponse:
    id: int
    wallet_id: int
    amount: float
    balance_before: float
    balance_after: float
    type: str
    status: int
    reference_id: str
    description: str
    created_at: str
    updated_at: str
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "type": self.type,
            "status": self.status,
            "reference_id": self.reference_id,
            "description": self.description,
        }
        if self.metadata:
            data["metadata"] = self.metadata
        data["created_at"] = self.created_at
        data["updated_at"] = self.updated_at
        return data


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON value: {name}")


def _optional_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


@dataclass
class WalletOperationRequest:
    """Body of a deposit or withdrawal request."""

    amount: float
    type: str = ""
    reference_id: str = ""
    description: str = ""
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_json(cls, body: bytes | str | dict[str, Any] | None) -> WalletOperationRequest:
        """Parse and validate a request body; raises ValueError when it is unusable."""
        if isinstance(body, dict):
            data: Any = body
        else:
            if body is None or not body.strip():
                raise ValueError("request body is empty")
            try:
                data = json.loads(body, parse_constant=_reject_constant)
            except json.JSONDecodeError as exc:
                raise ValueError(f"malformed JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise ValueError("request body must be a JSON object")

        amount = data.get("amount")
        if amount is None:
            raise ValueError("amount is required")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValueError("amount must be a number")
        if amount == 0:
            raise ValueError("amount is required")
        if amount < 0:
            raise ValueError("amount must be greater than 0")

        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")

        return cls(
            amount=float(amount),
            type=_optional_text(data, "type"),
            reference_id=_optional_text(data, "reference_id"),
            description=_optional_text(data, "description"),
            metadata=dict(metadata) if metadata is not None else None,
        )


@dataclass
class ErrorResponse:
    error: str
    code: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = {"error": self.error}
        if self.code:
            data["code"] = self.code
        if self.message:
            data["message"] = self.message
        return data


def _parse_id(value: int | str) -> int:
    """Parse an unsigned 32-bit identifier; raises ValueError otherwise."""
    if isinstance(value, bool):
        raise ValueError("identifier must be a number")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _ID_PATTERN.fullmatch(value):
        number = int(value)
    else:
        raise ValueError(f"invalid identifier: {value!r}")
    if not 0 <= number <= _MAX_ID:
        raise ValueError(f"identifier out of range: {value!r}")
    return number


def _parse_int(value: int | str | None) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INT_PATTERN.fullmatch(value):
        return int(value)
    return None


def _format_time(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime(_TIME_FORMAT)
    return "" if value is None else str(value)


def _error(status: int, error: str, message: str) -> Reply:
    return ErrorResponse(error=error, message=message).to_dict(), status


def _invalid_player_id() -> Reply:
    return _error(400, "Invalid player ID", "Player ID must be a valid number")


def _invalid_wallet_id() -> Reply:
    return _error(400, "Invalid wallet ID", "Wallet ID must be a valid number")


class AdminService:
    """Player and wallet operations of the admin API; each returns ``(body, status)``."""

    def __init__(self, player_usecase: Any, wallet_usecase: Any, config: AdminConfig | None = None) -> None:
        self.player_usecase = player_usecase
        self.wallet_usecase = wallet_usecase
        self.config = config if config is not None else AdminConfig()

    def get_player(self, player_id: int | str) -> Reply:
        try:
            number = _parse_id(player_id)
        except ValueError:
            return _invalid_player_id()
        logger.info("Getting player info for ID: %d", number)
        response = PlayerResponse(
            id=number,
            username=f"player_{player_id}",
            email=f"player{player_id}@example.com",
            status=1,
            created_at=_MOCK_TIME,
            updated_at=_MOCK_TIME,
        )
        return response.to_dict(), 200

    def get_player_wallets(self, player_id: int | str) -> Reply:
        try:
            user_id = _parse_id(player_id)
        except ValueError:
            return _invalid_player_id()
        logger.info("Getting wallets for player ID: %d", user_id)
        wallets = [
            WalletResponse(100 + user_id, user_id, 1000.0, "USD", 1, _MOCK_TIME, _MOCK_TIME),
            WalletResponse(200 + user_id, user_id, 500.0, "CNY", 1, _MOCK_TIME, _MOCK_TIME),
        ]
        return {"wallets": [w.to_dict() for w in wallets], "total": len(wallets)}, 200

    def get_wallet(self, wallet_id: int | str) -> Reply:
        try:
            number = _parse_id(wallet_id)
        except ValueError:
            return _invalid_wallet_id()
        try:
            wallet = self.wallet_usecase.get_wallet(number)
        except Exception as exc:
            logger.error("Failed to get wallet %d: %s", number, exc)
            return _error(404, "Wallet not found", "The specified wallet does not exist")
        if wallet is None:
            logger.error("Failed to get wallet %d: not found", number)
            return _error(404, "Wallet not found", "The specified wallet does not exist")
        response = WalletResponse(
            id=wallet.id,
            user_id=wallet.user_id,
            balance=wallet.balance,
            currency=wallet.currency,
            status=int(wallet.status),
            created_at=_format_time(wallet.created_at),
            updated_at=_format_time(wallet.updated_at),
        )
        return response.to_dict(), 200

    def get_wallet_transactions(
        self,
        wallet_id: int | str,
        limit: int | str | None = None,
        offset: int | str | None = None,
    ) -> Reply:
        try:
            number = _parse_id(wallet_id)
        except ValueError:
            return _invalid_wallet_id()

        page_size = _parse_int(DEFAULT_LIMIT if limit is None else limit)
        if page_size is None or page_size <= 0 or page_size > MAX_LIMIT:
            page_size = DEFAULT_LIMIT
        start = _parse_int(0 if offset is None else offset)
        if start is None or start < 0:
            start = 0

        try:
            transactions = self.wallet_usecase.get_transactions(number, page_size, start) or []
        except Exception as exc:
            logger.error("Failed to get transactions for wallet %d: %s", number, exc)
            return _error(500, "Failed to get transactions", "Unable to retrieve transaction history")

        response = [
            TransactionResponse(
                id=tx.id,
                wallet_id=tx.wallet_id,
                amount=tx.amount,
                balance_before=tx.balance_before,
                balance_after=tx.balance_after,
                type=tx.type,
                status=int(tx.status),
                reference_id=tx.reference_id,
                description=tx.description,
                metadata=tx.metadata,
                created_at=_format_time(tx.created_at),
                updated_at=_format_time(tx.updated_at),
            ).to_dict()
            for tx in transactions
        ]
        return {
            "transactions": response,
            "total": len(response),
            "limit": page_size,
            "offset": start,
        }, 200

    def freeze_wallet(self, wallet_id: int | str) -> Reply:
        try:
            number = _parse_id(wallet_id)
        except ValueError:
            return _invalid_wallet_id()
        try:
            self.wallet_usecase.freeze_wallet(number)
        except Exception as exc:
            logger.error("Failed to freeze wallet %d: %s", number, exc)
            return _error(500, "Failed to freeze wallet", "Unable to freeze the specified wallet")
        logger.info("Wallet %d has been frozen", number)
        return {"message": "Wallet frozen successfully", "wallet_id": number}, 200

    def unfreeze_wallet(self, wallet_id: int | str) -> Reply:
        try:
            number = _parse_id(wallet_id)
        except ValueError:
            return _invalid_wallet_id()
        try:
            self.wallet_usecase.unfreeze_wallet(number)
        except Exception as exc:
            logger.error("Failed to unfreeze wallet %d: %s", number, exc)
            return _error(500, "Failed to unfreeze wallet", "Unable to unfreeze the specified wallet")
        logger.info("Wallet %d has been unfrozen", number)
        return {"message": "Wallet unfrozen successfully", "wallet_id": number}, 200

    def deposit(self, wallet_id: int | str, body: bytes | str | dict[str, Any] | None) -> Reply:
        try:
            number = _parse_id(wallet_id)
        except ValueError:
            return _invalid_wallet_id()
        try:
            request = self._operation_request(body, "admin_deposit", "Admin deposit operation")
        except ValueError as exc:
            return _error(400, "Invalid request body", str(exc))
        try:
            self.wallet_usecase.deposit(
                number,
                request.amount,
                request.type,
                request.reference_id,
                request.description,
                request.metadata,
            )
        except Exception as exc:
            logger.error("Failed to deposit to wallet %d: %s", number, exc)
            return _error(500, "Failed to deposit", "Unable to process the deposit")
        logger.info("Deposited %.2f to wallet %d", request.amount, number)
        return {"message": "Deposit successful", "wallet_id": number, "amount": request.amount}, 200

    def withdraw(self, wallet_id: int | str, body: bytes | str | dict[str, Any] | None) -> Reply:
        try:
            number = _parse_id(wallet_id)
        except ValueError:
            return _invalid_wallet_id()
        try:
            request = self._operation_request(body, "admin_withdraw", "Admin withdraw operation")
        except ValueError as exc:
            return _error(400, "Invalid request body", str(exc))
        try:
            self.wallet_usecase.withdraw(
                number,
                request.amount,
                request.type,
                request.reference_id,
                request.description,
                request.metadata,
            )
        except Exception as exc:
            logger.error("Failed to withdraw from wallet %d: %s", number, exc)
            return _error(500, "Failed to withdraw", "Unable to process the withdrawal")
        logger.info("Withdrew %.2f from wallet %d", request.amount, number)
        return {"message": "Withdrawal successful", "wallet_id": number, "amount": request.amount}, 200

    @staticmethod
    def _operation_request(body: Any, default_type: str, default_description: str) -> WalletOperationRequest:
        request = WalletOperationRequest.from_json(body)
        if not request.type:
            request.type = default_type
        if not request.description:
            request.description = default_description
        if request.metadata is None:
            request.metadata = {}
        request.metadata["admin_operation"] = True
        return request