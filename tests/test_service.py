import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pytest

from fishserver.admin.service import AdminConfig, AdminService, WalletOperationRequest


@dataclass
class Wallet:
    id: int
    user_id: int
    balance: float
    currency: str
    status: int
    created_at: datetime
    updated_at: datetime


@dataclass
class Transaction:
    id: int
    wallet_id: int
    amount: float
    balance_before: float
    balance_after: float
    type: str
    status: int
    reference_id: str
    description: str
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


class FakeWalletUsecase:
    def __init__(self):
        self.calls = []
        self.wallets = {}
        self.transactions = []
        self.error = None

    def _record(self, name, *args):
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error

    def get_wallet(self, wallet_id):
        self._record("get_wallet", wallet_id)
        if wallet_id not in self.wallets:
            raise LookupError("wallet not found")
        return self.wallets[wallet_id]

    def get_transactions(self, wallet_id, limit, offset):
        self._record("get_transactions", wallet_id, limit, offset)
        return self.transactions

    def freeze_wallet(self, wallet_id):
        self._record("freeze_wallet", wallet_id)

    def unfreeze_wallet(self, wallet_id):
        self._record("unfreeze_wallet", wallet_id)

    def deposit(self, *args):
        self._record("deposit", *args)

    def withdraw(self, *args):
        self._record("withdraw", *args)


@pytest.fixture
def wallets():
    return FakeWalletUsecase()


@pytest.fixture
def service(wallets):
    return AdminService(None, wallets, AdminConfig(environment="dev"))


def roundtrip(reply):
    body, status = reply
    return json.loads(json.dumps(body)), status


def test_get_wallet_success(service, wallets):
    stamp = datetime(2024, 1, 2, 3, 4, 5)
    wallets.wallets[123] = Wallet(123, 456, 1000.0, "USD", 1, stamp, stamp)
    body, status = roundtrip(service.get_wallet("123"))
    assert status == 200
    assert body["id"] == 123
    assert body["user_id"] == 456
    assert body["balance"] == 1000.0
    assert body["currency"] == "USD"
    assert body["status"] == 1
    assert body["created_at"] == "2024-01-02T03:04:05Z"
    assert wallets.calls == [("get_wallet", (123,))]


def test_get_wallet_not_found(service, wallets):
    body, status = service.get_wallet("999")
    assert status == 404
    assert body["error"] == "Wallet not found"
    assert wallets.calls == [("get_wallet", (999,))]


@pytest.mark.parametrize("bad", ["invalid", "-1", "4294967296", "", "1.5"])
def test_get_wallet_invalid_id(service, wallets, bad):
    body, status = service.get_wallet(bad)
    assert status == 400
    assert body["error"] == "Invalid wallet ID"
    assert wallets.calls == []


def test_transactions_default_pagination(service, wallets):
    stamp = datetime(2024, 1, 1)
    wallets.transactions = [
        Transaction(1, 123, 100.0, 900.0, 1000.0, "deposit", 1, "ref_001", "Test deposit",
                    stamp, stamp, {"test": True})
    ]
    body, status = roundtrip(service.get_wallet_transactions("123"))
    assert status == 200
    assert len(body["transactions"]) == 1
    assert body["transactions"][0]["metadata"] == {"test": True}
    assert body["total"] == 1
    assert body["limit"] == 10
    assert body["offset"] == 0
    assert wallets.calls == [("get_transactions", (123, 10, 0))]


def test_transactions_custom_pagination(service, wallets):
    body, status = service.get_wallet_transactions("123", "5", "10")
    assert status == 200
    assert body["limit"] == 5
    assert body["offset"] == 10
    assert body["transactions"] == []
    assert wallets.calls == [("get_transactions", (123, 5, 10))]


@pytest.mark.parametrize("limit,offset", [("0", "-3"), ("101", "abc"), ("x", None)])
def test_transactions_bad_pagination_falls_back(service, wallets, limit, offset):
    body, _ = service.get_wallet_transactions("7", limit, offset)
    assert (body["limit"], body["offset"]) == (10, 0)


def test_transactions_omit_empty_metadata(service, wallets):
    stamp = datetime(2024, 1, 1)
    wallets.transactions = [
        Transaction(2, 7, 5.0, 0.0, 5.0, "deposit", 1, "", "", stamp, stamp, {})
    ]
    body, _ = service.get_wallet_transactions("7")
    assert "metadata" not in body["transactions"][0]


def test_transactions_failure(service, wallets):
    wallets.error = RuntimeError("db down")
    body, status = service.get_wallet_transactions("7")
    assert status == 500
    assert body["error"] == "Failed to get transactions"


def test_freeze_success(service, wallets):
    body, status = service.freeze_wallet("123")
    assert status == 200
    assert body["message"] == "Wallet frozen successfully"
    assert body["wallet_id"] == 123


def test_freeze_failed(service, wallets):
    wallets.error = RuntimeError("freeze failed")
    body, status = service.freeze_wallet("123")
    assert status == 500
    assert body["error"] == "Failed to freeze wallet"


def test_unfreeze_success(service, wallets):
    body, status = service.unfreeze_wallet("123")
    assert status == 200
    assert body["message"] == "Wallet unfrozen successfully"
    assert wallets.calls == [("unfreeze_wallet", (123,))]


def test_deposit_success(service, wallets):
    request = json.dumps({
        "amount": 100.0,
        "type": "admin_deposit",
        "reference_id": "ref_001",
        "description": "Test deposit",
        "metadata": {"test": True},
    })
    body, status = service.deposit("123", request)
    assert status == 200
    assert body["message"] == "Deposit successful"
    assert body["amount"] == 100.0
    name, args = wallets.calls[0]
    assert name == "deposit"
    assert args[:5] == (123, 100.0, "admin_deposit", "ref_001", "Test deposit")
    assert args[5]["admin_operation"] is True
    assert args[5]["test"] is True


def test_deposit_empty_object_is_rejected(service, wallets):
    body, status = service.deposit("123", "{}")
    assert status == 400
    assert body["error"] == "Invalid request body"
    assert wallets.calls == []


def test_deposit_negative_amount(service, wallets):
    body, status = service.deposit("123", json.dumps({"amount": -100.0}))
    assert status == 400
    assert wallets.calls == []


def test_deposit_defaults(service, wallets):
    body, status = service.deposit("5", {"amount": 3})
    assert status == 200
    assert body["message"] == "Deposit successful"
    assert body["wallet_id"] == 5
    assert body["amount"] == 3
    _, args = wallets.calls[0]
    assert args == (5, 3.0, "admin_deposit", "", "Admin deposit operation", {"admin_operation": True})


def test_withdraw_success(service, wallets):
    body, status = service.withdraw("123", json.dumps({"amount": 50.0, "description": "Test withdrawal"}))
    assert status == 200
    assert body["message"] == "Withdrawal successful"
    assert body["amount"] == 50.0
    _, args = wallets.calls[0]
    assert args[:5] == (123, 50.0, "admin_withdraw", "", "Test withdrawal")
    assert args[5]["admin_operation"] is True


def test_withdraw_insufficient_funds(service, wallets):
    wallets.error = RuntimeError("insufficient funds")
    body, status = service.withdraw("123", json.dumps({"amount": 1000.0}))
    assert status == 500
    assert body["error"] == "Failed to withdraw"
    _, args = wallets.calls[0]
    assert args[:5] == (123, 1000.0, "admin_withdraw", "", "Admin withdraw operation")


def test_get_player_mock_data(service):
    body, status = service.get_player("42")
    assert status == 200
    assert body == {
        "id": 42,
        "username": "player_42",
        "email": "player42@example.com",
        "status": 1,
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
    }


def test_get_player_invalid(service):
    body, status = service.get_player("abc")
    assert status == 400
    assert body["error"] == "Invalid player ID"


def test_get_player_wallets(service):
    body, status = service.get_player_wallets("7")
    assert status == 200
    assert body["total"] == 2
    assert [w["id"] for w in body["wallets"]] == [107, 207]
    assert [w["currency"] for w in body["wallets"]] == ["USD", "CNY"]


@pytest.mark.parametrize(
    "raw",
    ["", "not json", "[1]", '{"amount": "ten"}', '{"amount": true}', '{"amount": 0}',
     '{"amount": 1, "metadata": 3}', '{"amount": 1, "type": 5}', '{"amount": NaN}'],
)
def test_request_from_json_rejects(raw):
    with pytest.raises(ValueError):
        WalletOperationRequest.from_json(raw)


def test_request_from_json_parses_fields():
    request = WalletOperationRequest.from_json(
        b'{"amount": 2, "type": "t", "reference_id": "r", "description": "d", "metadata": {"k": 1}}'
    )
    assert request == WalletOperationRequest(2.0, "t", "r", "d", {"k": 1})