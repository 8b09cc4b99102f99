import pytest
from nacl.signing import SigningKey


@pytest.fixture
def local_domain(helper_module):
    return helper_module.VoucherDomain("Lazy Collection", "1", "xian-testnet-1", "con_lazy_mint")


def test_digest_is_deterministic(helper_module, local_domain):
    d1 = helper_module.voucher_digest(local_domain, 1, 3)
    d2 = helper_module.voucher_digest(local_domain, 1, 3)
    assert d1 == d2
    assert len(d1) == 64


def test_digest_binds_every_field_and_the_domain(helper_module, local_domain):
    base = helper_module.voucher_digest(local_domain, 1, 3, 50)

    assert helper_module.voucher_digest(local_domain, 2, 3, 50) != base
    assert helper_module.voucher_digest(local_domain, 1, 4, 50) != base
    assert helper_module.voucher_digest(local_domain, 1, 3, 51) != base
    assert helper_module.voucher_digest(local_domain, 1, 3) != base
    assert helper_module.voucher_digest(local_domain._replace(contract="con_other"), 1, 3, 50) != base
    assert helper_module.voucher_digest(local_domain._replace(version="2"), 1, 3, 50) != base


def test_domain_fields_cannot_be_shifted(helper_module):
    a = helper_module.VoucherDomain("a|b", "1", "c", "con_x")
    b = helper_module.VoucherDomain("a", "b|1", "c", "con_x")
    assert helper_module.domain_separator(a) != helper_module.domain_separator(b)


def test_encode_uint256_bounds(helper_module):
    assert helper_module.encode_uint256(255) == "0" * 62 + "ff"
    assert helper_module.encode_uint256(helper_module.UINT256_MAX) == "f" * 64

    for bad in (-1, helper_module.UINT256_MAX + 1, True, "7", 1.0):
        with pytest.raises(ValueError):
            helper_module.encode_uint256(bad)


def test_build_voucher_shape(helper_module, local_domain, issuer_key):
    exact = helper_module.build_voucher(issuer_key, local_domain, 4, 2)
    floor = helper_module.build_voucher(issuer_key, local_domain, 4, 2, unit_price=30)

    assert set(exact) == {"id", "quantity", "signature"}
    assert set(floor) == {"id", "quantity", "unit_price", "signature"}
    assert len(exact["signature"]) == helper_module.SIGNATURE_LENGTH
    assert exact["signature"].startswith(helper_module.address_of(issuer_key))


def test_build_voucher_rejects_bad_quantity(helper_module, local_domain, issuer_key):
    for quantity in (0, helper_module.BATCH_LIMIT + 1):
        with pytest.raises(ValueError):
            helper_module.build_voucher(issuer_key, local_domain, 1, quantity)


def test_recover_signer_round_trip(helper_module, local_domain, issuer_key):
    voucher = helper_module.build_voucher(issuer_key, local_domain, 1, 3, unit_price=10)
    assert helper_module.recover_voucher_signer(local_domain, voucher) == helper_module.address_of(issuer_key)

    tampered = dict(voucher, quantity=4)
    assert helper_module.recover_voucher_signer(local_domain, tampered) is None


def test_recover_signer_fails_closed(helper_module, local_domain, issuer_key):
    digest = helper_module.voucher_digest(local_domain, 1, 1)
    signature = helper_module.sign_digest(issuer_key, digest)

    assert helper_module.recover_signer(digest, signature) == helper_module.address_of(issuer_key)
    for bad in (None, "", signature[:-2], signature.upper(), "zz" + signature[2:], " " + signature[1:]):
        assert helper_module.recover_signer(digest, bad) is None

    # key swapped for another issuer's
    other = SigningKey(bytes([9]) * 32)
    forged = helper_module.address_of(other) + signature[helper_module.KEY_LENGTH:]
    assert helper_module.recover_signer(digest, forged) is None


def test_required_payment(helper_module, local_domain, issuer_key):
    exact = helper_module.build_voucher(issuer_key, local_domain, 1, 3)
    floor = helper_module.build_voucher(issuer_key, local_domain, 2, 3, unit_price=7)

    assert helper_module.required_payment(exact, fixed_unit_price=100) == 300
    assert helper_module.required_payment(floor) == 21
    with pytest.raises(ValueError):
        helper_module.required_payment(exact)


def test_voucher_issuer_hands_out_fresh_ids(helper_module, local_domain, issuer_key):
    issuer = helper_module.VoucherIssuer(issuer_key, local_domain, next_id=10)

    first = issuer.issue(2)
    second = issuer.issue(1)

    assert (first["id"], second["id"]) == (10, 11)
    assert issuer.next_id == 12
    assert issuer.address == helper_module.address_of(issuer_key)
    assert helper_module.recover_voucher_signer(local_domain, second) == issuer.address
