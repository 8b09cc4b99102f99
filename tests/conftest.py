import hashlib
import importlib.util
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient
from contracting.compilation import whitelists
from nacl.signing import SigningKey

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONTRACT_PATH = PROJECT_ROOT / "con_lazy_mint.py"
CURRENCY_PATH = Path(__file__).resolve().parent / "contracts" / "con_test_currency.py"
HELPER_PATH = PROJECT_ROOT / "voucher_client.py"
SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

CHAIN_ID = "xian-testnet-1"
DOMAIN_VERSION = "1"
UNIT_PRICE = 100
MAX_SUPPLY = 20
STARTING_BALANCE = 1_000_000


@pytest.fixture(scope="session", autouse=True)
def enable_sha3_and_whitelist():
    whitelists.ALLOWED_BUILTINS.update({"hashlib", "decimal"})

    if not hasattr(hashlib, "sha3"):
        def _sha3(data):
            if isinstance(data, str):
                data = data.encode("utf-8")
            return hashlib.sha3_256(data).hexdigest()

        setattr(hashlib, "sha3", _sha3)


@pytest.fixture(scope="session")
def helper_module():
    spec = importlib.util.spec_from_file_location("voucher_client_tests", HELPER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="session")
def issuer_key():
    return SigningKey(bytes([1]) * 32)


@pytest.fixture(scope="session")
def rogue_key():
    return SigningKey(bytes([2]) * 32)


@pytest.fixture
def client():
    client = ContractingClient(signer="operator", metering=False)
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))
    return client


@pytest.fixture
def currency(client):
    client.submit(
        CURRENCY_PATH.read_text(),
        name="con_test_currency",
        owner=None,
        constructor_args={"supply": 10 * STARTING_BALANCE},
    )
    currency = client.get_contract("con_test_currency")
    for holder in ("bob", "carol"):
        currency.transfer(amount=STARTING_BALANCE, to=holder)
    return currency


@pytest.fixture
def deploy(client, currency, issuer_key, helper_module):
    """Submits a collection and pre-approves it to pull payment from bob and carol."""
    def _deploy(name, **overrides):
        args = {
            "name": "Lazy Collection",
            "symbol": "LAZY",
            "issuer": helper_module.address_of(issuer_key),
            "payment_token": "con_test_currency",
            "price_policy": "exact",
            "unit_price": UNIT_PRICE,
            "max_supply": MAX_SUPPLY,
            "reserved_supply": 5,
            "reserved_mode": "sequential",
            "reserved_section_size": 0,
            "base_uri": "ipfs://base/",
            "domain_version": DOMAIN_VERSION,
            "chain_id": CHAIN_ID,
            "redemption_enabled": True,
        }
        args.update(overrides)
        client.submit(CONTRACT_PATH.read_text(), name=name, owner=None, constructor_args=args)

        for holder in ("bob", "carol"):
            currency.approve(amount=STARTING_BALANCE, to=name, signer=holder)
        return client.get_contract(name)

    return _deploy


@pytest.fixture
def contract(deploy):
    return deploy("con_lazy_mint")


@pytest.fixture
def floor_contract(deploy):
    return deploy(
        "con_lazy_mint_floor",
        price_policy="floor",
        unit_price=0,
        reserved_supply=6,
        reserved_mode="section",
        reserved_section_size=3,
    )


@pytest.fixture
def domain(helper_module):
    return helper_module.VoucherDomain("Lazy Collection", DOMAIN_VERSION, CHAIN_ID, "con_lazy_mint")


@pytest.fixture
def floor_domain(helper_module):
    return helper_module.VoucherDomain("Lazy Collection", DOMAIN_VERSION, CHAIN_ID, "con_lazy_mint_floor")
