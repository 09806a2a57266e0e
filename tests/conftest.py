"""Shared fixtures: fixed keys, a controllable clock, a deployed devnet."""

import secrets

import pytest
from eth_account import Account

from taskledger.crypto.ids import application_id
from taskledger.crypto.signing import sign_registration
from taskledger.devnet import Devnet
from taskledger.models.application import ApplicationMetadata

OWNER_KEY = "0x" + "11" * 32
AGGREGATOR_KEY = "0x" + "22" * 32
OPERATOR_KEYS = ["0x" + "33" * 32, "0x" + "44" * 32, "0x" + "55" * 32]
USER_KEY = "0x" + "66" * 32

OWNER = Account.from_key(OWNER_KEY).address
AGGREGATOR = Account.from_key(AGGREGATOR_KEY).address
OPERATORS = [Account.from_key(k).address for k in OPERATOR_KEYS]
USER = Account.from_key(USER_KEY).address
STRANGER = "0x" + "ab" * 20

START_TIME = 1_700_000_000


class FakeClock:
    """Ledger clock that only moves when told to."""

    def __init__(self, start: int = START_TIME) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> None:
        self.now += seconds


def register_operator(devnet: Devnet, key: str) -> str:
    operator = Account.from_key(key).address
    proof = sign_registration(
        key, devnet.directory.address, "0x" + secrets.token_hex(32), devnet.ledger.now() + 3600,
    )
    devnet.directory.register_operator(operator, proof, sender=operator)
    return operator


def register_app(devnet: Devnet, name: str = "APP1") -> str:
    app_id = application_id(name)
    devnet.app_registry.register(app_id, ApplicationMetadata(name=name), sender=OWNER)
    return app_id


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def devnet(clock: FakeClock) -> Devnet:
    return Devnet.create(OWNER, AGGREGATOR, clock=clock)


@pytest.fixture
def app_id(devnet: Devnet) -> str:
    return register_app(devnet)


@pytest.fixture
def serving_network(devnet: Devnet, app_id: str) -> Devnet:
    """Devnet with APP1 registered and three operators opted in."""
    for key in OPERATOR_KEYS:
        operator = register_operator(devnet, key)
        devnet.directory.opt_in(app_id, sender=operator)
    return devnet
