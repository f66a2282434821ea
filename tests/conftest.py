"""Shared fixtures for the test suite.

Provides a fake NEAR JSON-RPC node served through ``httpx.MockTransport``,
a connected temporary database, a seeded in-memory store and agent
factories.
"""

from __future__ import annotations

import base64
import json
import struct
from typing import Any

import base58
import httpx
import pytest
import pytest_asyncio

from bond_credit.core.models import Agent, CredibilityTier
from bond_credit.core.seed import ensure_seeded
from bond_credit.core.store import InMemoryStore
from bond_credit.scoring.agent_score import calculate_agent_score
from bond_credit.storage.database import Database

# BIP-39 test vector with a valid checksum.
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)

ONE_NEAR = 10**24


# ---------------------------------------------------------------------------
# Fake NEAR node
# ---------------------------------------------------------------------------

class FakeNearNode:
    """In-process NEAR RPC stand-in - no network calls.

    Accounts listed in ``balances`` exist; everything else answers with an
    ``UNKNOWN_ACCOUNT`` error. Broadcasts are checked the way a node checks
    them: the block hash must be the one served and the nonce must be above
    the access key's current nonce. Accepted payloads are kept in
    ``broadcasts``, refused ones in ``rejected``.
    """

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.block_hash = base58.b58encode(bytes(range(32))).decode("ascii")
        self.broadcasts: list[str] = []
        self.rejected: list[str] = []
        self.fail_broadcast: str | None = None   # "rate_limit", "failure", "malformed" or None
        self.lagging_views = False               # access-key views keep the first nonce served
        self.broken_access_keys: set[str] = set()
        self.calls: list[dict[str, Any]] = []
        self._viewed_nonces: dict[str, int] = {}

    def fund(self, account_id: str, near: int = 5) -> None:
        self.balances[account_id] = near * ONE_NEAR

    def nonce_of(self, account_id: str) -> int:
        return self.nonces.setdefault(account_id, 100)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _result(self, request_id: Any, result: Any) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "result": result})

    def _error(
        self, request_id: Any, name: str, cause: str, message: str, data: Any = None,
    ) -> httpx.Response:
        return httpx.Response(200, json={
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {
                "name": name,
                "cause": {"name": cause},
                "message": message,
                "data": message if data is None else data,
            },
        })

    def _invalid_tx(self, request_id: Any, payload: str, error: Any) -> httpx.Response:
        self.rejected.append(payload)
        return self._error(
            request_id, "HANDLER_ERROR", "INVALID_TRANSACTION", "Transaction is invalid",
            data={"TxExecutionError": {"InvalidTxError": error}},
        )

    def _view_access_key(self, rid: Any, account_id: str) -> httpx.Response:
        if account_id in self.broken_access_keys:
            return self._result(rid, {"permission": "FullAccess"})
        nonce = self.nonce_of(account_id)
        if self.lagging_views:
            nonce = self._viewed_nonces.setdefault(account_id, nonce)
        return self._result(rid, {
            "nonce": nonce,
            "permission": "FullAccess",
            "block_hash": self.block_hash,
        })

    def _broadcast(self, rid: Any, payload: str) -> httpx.Response:
        tx = decode_transfer(payload)
        if tx["signer_id"] not in self.balances:
            return self._invalid_tx(rid, payload, "SignerDoesNotExist")
        if tx["block_hash"] != self.block_hash:
            return self._invalid_tx(rid, payload, "Expired")
        ak_nonce = self.nonce_of(tx["signer_id"])
        if tx["nonce"] <= ak_nonce:
            return self._invalid_tx(rid, payload, {
                "InvalidNonce": {"tx_nonce": tx["nonce"], "ak_nonce": ak_nonce},
            })

        self.nonces[tx["signer_id"]] = tx["nonce"]
        self.broadcasts.append(payload)
        tx_hash = f"tx{len(self.broadcasts)}"
        if self.fail_broadcast == "malformed":
            return self._result(rid, "accepted")
        if self.fail_broadcast == "failure":
            return self._result(rid, {
                "status": {"Failure": {"ActionError": {"kind": "LackBalanceForState"}}},
                "transaction": {"hash": tx_hash},
            })
        return self._result(rid, {
            "status": {"SuccessValue": ""},
            "transaction": {"hash": tx_hash},
        })

    def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        method, params, rid = body["method"], body["params"], body["id"]

        if method == "query":
            account_id = params["account_id"]
            if account_id not in self.balances:
                return self._error(rid, "HANDLER_ERROR", "UNKNOWN_ACCOUNT", f"account {account_id} does not exist")
            if params["request_type"] == "view_account":
                return self._result(rid, {
                    "amount": str(self.balances[account_id]),
                    "locked": "0",
                    "block_hash": self.block_hash,
                })
            if params["request_type"] == "view_access_key":
                return self._view_access_key(rid, account_id)

        if method == "broadcast_tx_commit":
            if self.fail_broadcast == "rate_limit":
                return httpx.Response(429, text="Too Many Requests")
            return self._broadcast(rid, params[0])

        if method == "block":
            return self._result(rid, {"header": {"hash": self.block_hash, "height": 1}})

        return self._error(rid, "REQUEST_VALIDATION_ERROR", "METHOD_NOT_FOUND", f"unknown method {method}")


def decode_transfer(payload: str) -> dict[str, Any]:
    """Read signer, nonce, receiver and block hash from a signed transfer."""
    raw = base64.b64decode(payload)
    offset = 0

    def string() -> str:
        nonlocal offset
        (length,) = struct.unpack_from("<I", raw, offset)
        offset += 4 + length
        return raw[offset - length:offset].decode("utf-8")

    signer_id = string()
    offset += 1 + 32                      # key type + public key
    (nonce,) = struct.unpack_from("<Q", raw, offset)
    offset += 8
    receiver_id = string()
    block_hash = base58.b58encode(raw[offset:offset + 32]).decode("ascii")
    return {"signer_id": signer_id, "nonce": nonce, "receiver_id": receiver_id, "block_hash": block_hash}


@pytest.fixture
def near_node():
    return FakeNearNode()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def store():
    s = InMemoryStore()
    ensure_seeded(s)
    return s


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

def make_agent(
    provenance: float = 80,
    performance: float = 80,
    perception: float = 60,
    verification: float = 80,
    tier: CredibilityTier = CredibilityTier.GOLD,
    **kwargs: Any,
) -> Agent:
    """Build an agent whose overall score follows the 40/40/20 weighting."""
    return Agent(
        name=kwargs.pop("name", "Test Agent"),
        operator=kwargs.pop("operator", "0xabc"),
        score=calculate_agent_score(provenance, performance, perception, verification),
        credibility_tier=tier,
        **kwargs,
    )


@pytest.fixture
def gold_agent():
    # overall = 32 + 32 + 12 = 76
    return make_agent()
