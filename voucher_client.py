import hashlib
import logging
from collections import namedtuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

logger = logging.getLogger(__name__)

# ---- Chain-constant parameters & helpers (mirror contract) ----

UINT256_MAX = 2**256 - 1
BATCH_LIMIT = 10

KEY_LENGTH = 64
SIGNATURE_LENGTH = 192

DOMAIN_TYPE = 'LazyMintDomain(string name,string version,string chainId,string verifyingContract)'
VOUCHER_TYPE_EXACT = 'Voucher(uint256 id,uint256 quantity)'
VOUCHER_TYPE_FLOOR = 'Voucher(uint256 id,uint256 quantity,uint256 unitPrice)'

VoucherDomain = namedtuple('VoucherDomain', ['name', 'version', 'chain_id', 'contract'])


def sha3_hex(s: str) -> str:
    # Matches Xian env semantics for non-hex input (every preimage starts with "XLAZY:")
    return hashlib.sha3_256(s.encode('utf-8')).hexdigest()

def tagged_hash(tag: str, *parts: str) -> str:
    return sha3_hex("XLAZY:" + tag + "|" + "|".join(parts))

def string_hash(value: str) -> str:
    return tagged_hash("string", value)

def encode_uint256(value: int) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected an integer, got {value!r}")
    if not 0 <= value <= UINT256_MAX:
        raise ValueError(f"{value} is outside the uint256 range")
    return format(value, '064x')

def domain_separator(domain: VoucherDomain) -> str:
    return tagged_hash(
        "domain",
        DOMAIN_TYPE,
        string_hash(domain.name),
        string_hash(domain.version),
        string_hash(domain.chain_id),
        string_hash(domain.contract),
    )

def voucher_struct_hash(voucher_id: int, quantity: int, unit_price: int = None) -> str:
    """
    Floor-price vouchers bind unit_price; exact-price vouchers (unit_price=None)
    bind only id and quantity.
    """
    if unit_price is None:
        return tagged_hash("voucher", VOUCHER_TYPE_EXACT,
                           encode_uint256(voucher_id), encode_uint256(quantity))
    return tagged_hash("voucher", VOUCHER_TYPE_FLOOR,
                       encode_uint256(voucher_id), encode_uint256(quantity), encode_uint256(unit_price))

def voucher_digest(domain: VoucherDomain, voucher_id: int, quantity: int, unit_price: int = None) -> str:
    return tagged_hash("digest", domain_separator(domain), voucher_struct_hash(voucher_id, quantity, unit_price))

# ---- Signing & recovery ------------------------------------------------------

def address_of(signing_key: SigningKey) -> str:
    return signing_key.verify_key.encode().hex()

def sign_digest(signing_key: SigningKey, digest: str) -> str:
    """
    Returns the signature envelope the contract expects: vk_hex || sig_hex.
    The message is the digest hex string itself, as crypto.verify encodes it.
    """
    signature = signing_key.sign(digest.encode('utf-8')).signature
    return address_of(signing_key) + signature.hex()

def recover_signer(digest: str, signature: str):
    """
    Returns the signer's address, or None when the envelope is malformed or
    does not verify over `digest`.
    """
    if not isinstance(signature, str) or len(signature) != SIGNATURE_LENGTH:
        return None
    try:
        raw = bytes.fromhex(signature)
    except ValueError:
        return None
    if raw.hex() != signature:
        # contract only accepts lowercase hex
        return None

    vk = signature[:KEY_LENGTH]
    try:
        VerifyKey(raw[:KEY_LENGTH // 2]).verify(digest.encode('utf-8'), raw[KEY_LENGTH // 2:])
    except BadSignatureError:
        logger.warning("Signature from %s does not verify over digest %s", vk, digest)
        return None
    return vk

# ---- High-level builders -----------------------------------------------------

def build_voucher(signing_key: SigningKey,
                  domain: VoucherDomain,
                  voucher_id: int,
                  quantity: int,
                  unit_price: int = None):
    """
    Returns the `voucher` argument for contract.redeem():
        {'id', 'quantity', ['unit_price'], 'signature'}
    Pass unit_price only for a floor-price deployment.
    """
    if not 1 <= quantity <= BATCH_LIMIT:
        raise ValueError(f"Quantity must be between 1 and {BATCH_LIMIT}")

    digest = voucher_digest(domain, voucher_id, quantity, unit_price)
    voucher = {
        'id': voucher_id,
        'quantity': quantity,
        'signature': sign_digest(signing_key, digest),
    }
    if unit_price is not None:
        voucher['unit_price'] = unit_price

    logger.debug("Signed voucher %s (quantity=%s) for %s", voucher_id, quantity, domain.contract)
    return voucher

def required_payment(voucher: dict, fixed_unit_price: int = None) -> int:
    """
    Minimum payment for `voucher`: fixed_unit_price * quantity on an exact-price
    deployment (where it is also the only accepted amount), otherwise the
    voucher's own unit_price * quantity.
    """
    if fixed_unit_price is not None:
        return fixed_unit_price * voucher['quantity']
    if 'unit_price' not in voucher:
        raise ValueError("Voucher carries no unit_price; pass fixed_unit_price")
    return voucher['unit_price'] * voucher['quantity']

def recover_voucher_signer(domain: VoucherDomain, voucher: dict):
    digest = voucher_digest(domain, voucher['id'], voucher['quantity'], voucher.get('unit_price'))
    return recover_signer(digest, voucher['signature'])

# ---- Convenience: issuer-side signer -----------------------------------------

class VoucherIssuer:
    """
    Holds an issuer key and the domain of one deployment, and hands out
    vouchers with increasing ids. Ids must never be reused across the
    collection's lifetime, so seed `next_id` from your own records.
    """
    def __init__(self, signing_key: SigningKey, domain: VoucherDomain, next_id: int = 1):
        self.signing_key = signing_key
        self.domain = domain
        self.next_id = next_id

    @property
    def address(self) -> str:
        return address_of(self.signing_key)

    def issue(self, quantity: int, unit_price: int = None):
        voucher = build_voucher(self.signing_key, self.domain, self.next_id, quantity, unit_price)
        self.next_id += 1
        return voucher
