"""
LAZY-MINT VOUCHER COLLECTION

Issuers sign vouchers off-chain ("mint `quantity` tokens under voucher `id`").
Anyone holding a voucher redeems it here, paying in the configured token.
On redemption the contract:
  - rebuilds the domain-separated digest of the voucher fields
  - recovers the signer from the signature envelope (vk || sig)
  - checks live issuer authority, batch size, supply cap, payment policy
  - consumes the voucher id (once, forever)
  - creates each token owned by the signer, then transfers it to the caller

Any failed assert aborts the transaction and discards every write.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

BATCH_LIMIT = 10
UINT256_MAX = 2**256 - 1

HEX_DIGITS = '0123456789abcdef'
KEY_LENGTH = 64          # hex chars of an ed25519 verifying key
SIGNATURE_LENGTH = 192   # vk (32 bytes) || ed25519 signature (64 bytes), hex

NULL_ADDRESS = '0' * 64

ISSUER_ROLE = 'issuer'
WITHDRAWER_ROLE = 'withdrawer'
ROLES = [ISSUER_ROLE, WITHDRAWER_ROLE]

PRICE_EXACT = 'exact'
PRICE_FLOOR = 'floor'

RESERVED_SEQUENTIAL = 'sequential'
RESERVED_SECTION = 'section'

DOMAIN_TYPE = 'LazyMintDomain(string name,string version,string chainId,string verifyingContract)'
VOUCHER_TYPE_EXACT = 'Voucher(uint256 id,uint256 quantity)'
VOUCHER_TYPE_FLOOR = 'Voucher(uint256 id,uint256 quantity,uint256 unitPrice)'

def tagged_hash(tag: str, *parts):
    return hashlib.sha3("XLAZY:" + tag + "|" + "|".join(parts))

def string_hash(value: str):
    return tagged_hash("string", value)

def encode_uint256(value, field: str):
    assert isinstance(value, int) and not isinstance(value, bool), 'InvalidVoucher: ' + field + ' must be an integer'
    assert 0 <= value <= UINT256_MAX, 'InvalidVoucher: ' + field + ' out of uint256 range'
    return hex(value)[2:].zfill(64)

def is_hex(value: str):
    for c in value:
        if c not in HEX_DIGITS:
            return False
    return True

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# contract metadata / config
metadata = Hash()

# 'issued' (public range) and 'reserved' counters
supply = Hash(default_value=0)

# voucher_id -> True once consumed; never reset
redeemed = Hash(default_value=False)

# (role, address) -> bool
roles = Hash(default_value=False)

# section index -> True once minted
reserved_sections = Hash(default_value=False)

# token_id -> owner address
owners = Hash()

# address -> number of tokens held
balances = Hash(default_value=0)

# token_id -> address allowed to move it
token_approvals = Hash()

# collected payment not yet withdrawn
treasury = Variable()

# Events
TransferEvent = LogEvent('Transfer', {
    'from': {'type': str, 'idx': True},
    'to': {'type': str, 'idx': True},
    'token_id': {'type': int, 'idx': True}
})

ApprovalEvent = LogEvent('Approval', {
    'owner': {'type': str, 'idx': True},
    'approved': {'type': str, 'idx': True},
    'token_id': {'type': int, 'idx': True}
})

VoucherRedeemedEvent = LogEvent('VoucherRedeemed', {
    'voucher_id': {'type': int, 'idx': True},
    'signer': {'type': str, 'idx': True},
    'redeemer': {'type': str, 'idx': True},
    'quantity': {'type': int},
    'first_token_id': {'type': int},
    'payment': {'type': int}
})

RoleGrantedEvent = LogEvent('RoleGranted', {
    'role': {'type': str, 'idx': True},
    'account': {'type': str, 'idx': True},
    'by': {'type': str}
})

RoleRevokedEvent = LogEvent('RoleRevoked', {
    'role': {'type': str, 'idx': True},
    'account': {'type': str, 'idx': True},
    'by': {'type': str}
})

WithdrawalEvent = LogEvent('Withdrawal', {
    'to': {'type': str, 'idx': True},
    'amount': {'type': int},
    'by': {'type': str, 'idx': True}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(name: str,
         symbol: str,
         issuer: str,
         payment_token: str,
         price_policy: str,
         unit_price: int,
         max_supply: int,
         reserved_supply: int,
         reserved_mode: str,
         reserved_section_size: int,
         base_uri: str,
         domain_version: str,
         chain_id: str,
         redemption_enabled: bool):
    assert price_policy in (PRICE_EXACT, PRICE_FLOOR), 'InvalidConfig: unknown price policy'
    assert reserved_mode in (RESERVED_SEQUENTIAL, RESERVED_SECTION), 'InvalidConfig: unknown reserved mode'
    assert unit_price >= 0, 'InvalidConfig: negative unit price'
    assert max_supply > 0, 'InvalidConfig: max_supply must be positive'
    assert reserved_supply >= 0, 'InvalidConfig: negative reserved supply'
    if reserved_mode == RESERVED_SECTION:
        assert reserved_section_size > 0, 'InvalidConfig: section size must be positive'
        assert reserved_supply % reserved_section_size == 0, 'InvalidConfig: section size must divide reserved supply'

    metadata['name'] = name
    metadata['symbol'] = symbol
    metadata['operator'] = ctx.caller
    metadata['issuer'] = issuer
    metadata['payment_token'] = payment_token

    metadata['price_policy'] = price_policy
    metadata['unit_price'] = unit_price
    metadata['max_supply'] = max_supply
    metadata['reserved_supply'] = reserved_supply
    metadata['reserved_mode'] = reserved_mode
    metadata['reserved_section_size'] = reserved_section_size

    metadata['base_uri'] = base_uri
    metadata['uri_ranges'] = []

    metadata['domain_version'] = domain_version
    metadata['chain_id'] = chain_id
    metadata['redemption_enabled'] = redemption_enabled

    roles[ISSUER_ROLE, issuer] = True
    treasury.set(0)

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_metadata():
    return {
        'name': metadata['name'],
        'symbol': metadata['symbol'],
        'operator': metadata['operator'],
        'issuer': metadata['issuer'],
        'payment_token': metadata['payment_token'],
        'price_policy': metadata['price_policy'],
        'unit_price': metadata['unit_price'],
        'max_supply': metadata['max_supply'],
        'issued': supply['issued'],
        'reserved_supply': metadata['reserved_supply'],
        'reserved_issued': supply['reserved'],
        'reserved_mode': metadata['reserved_mode'],
        'batch_limit': BATCH_LIMIT,
        'redemption_enabled': metadata['redemption_enabled']
    }

@export
def has_been_redeemed(voucher_id: int):
    return redeemed[voucher_id]

@export
def remaining_supply():
    return metadata['max_supply'] - supply['issued']

@export
def required_payment(quantity: int, unit_price: int):
    # unit_price is only consulted by the floor policy
    if metadata['price_policy'] == PRICE_EXACT:
        return metadata['unit_price'] * quantity
    return unit_price * quantity

# -----------------------------------------------------------------------------
# Domain hashing
# -----------------------------------------------------------------------------

def compute_domain_separator():
    return tagged_hash(
        "domain",
        DOMAIN_TYPE,
        string_hash(metadata['name']),
        string_hash(metadata['domain_version']),
        string_hash(metadata['chain_id']),
        string_hash(ctx.this)
    )

def voucher_struct_hash(voucher_id, quantity, unit_price):
    if metadata['price_policy'] == PRICE_FLOOR:
        return tagged_hash(
            "voucher",
            VOUCHER_TYPE_FLOOR,
            encode_uint256(voucher_id, 'id'),
            encode_uint256(quantity, 'quantity'),
            encode_uint256(unit_price, 'unit_price')
        )
    return tagged_hash(
        "voucher",
        VOUCHER_TYPE_EXACT,
        encode_uint256(voucher_id, 'id'),
        encode_uint256(quantity, 'quantity')
    )

def compute_digest(voucher_id, quantity, unit_price):
    return tagged_hash("digest", compute_domain_separator(), voucher_struct_hash(voucher_id, quantity, unit_price))

@export
def domain_separator():
    return compute_domain_separator()

@export
def voucher_digest(voucher_id: int, quantity: int, unit_price: int):
    return compute_digest(voucher_id, quantity, unit_price)

def unpack_voucher(voucher):
    assert 'id' in voucher, 'InvalidVoucher: missing id'
    assert 'quantity' in voucher, 'InvalidVoucher: missing quantity'
    assert 'signature' in voucher, 'InvalidVoucher: missing signature'

    unit_price = 0
    if metadata['price_policy'] == PRICE_FLOOR:
        assert 'unit_price' in voucher, 'InvalidVoucher: missing unit_price'
        unit_price = voucher['unit_price']

    return voucher['id'], voucher['quantity'], unit_price, voucher['signature']

# -----------------------------------------------------------------------------
# Signature recovery
# -----------------------------------------------------------------------------

def try_recover_signer(digest, signature):
    if not isinstance(signature, str) or len(signature) != SIGNATURE_LENGTH:
        return None
    if not is_hex(signature):
        return None

    vk = signature[:KEY_LENGTH]
    if not crypto.verify(vk, digest, signature[KEY_LENGTH:]):
        return None
    return vk

def recover_signer(digest, signature):
    signer = try_recover_signer(digest, signature)
    assert signer is not None, 'InvalidSignature: signature does not verify against the voucher digest'
    return signer

@export
def recover_voucher_signer(voucher: dict):
    voucher_id, quantity, unit_price, signature = unpack_voucher(voucher)
    return try_recover_signer(compute_digest(voucher_id, quantity, unit_price), signature)

# -----------------------------------------------------------------------------
# Supply / payment guard
# -----------------------------------------------------------------------------

def check_batch(quantity):
    assert quantity > 0, 'ZeroQuantity: voucher quantity must be at least 1'
    assert quantity <= BATCH_LIMIT, 'BatchTooLarge: at most ' + str(BATCH_LIMIT) + ' tokens per redemption'

def check_supply(requested, issued, cap):
    assert issued + requested <= cap, 'SupplyExceeded: only ' + str(cap - issued) + ' tokens left'

def check_payment(paid, quantity, unit_price):
    assert isinstance(paid, int) and paid >= 0, 'InsufficientFunds: payment must be a non-negative integer'

    if metadata['price_policy'] == PRICE_EXACT:
        expected = metadata['unit_price'] * quantity
        assert paid == expected, 'InsufficientFunds: payment must equal ' + str(expected)
    else:
        floor = unit_price * quantity
        assert paid >= floor, 'InsufficientFunds: payment must be at least ' + str(floor)

def collect_payment(amount):
    if amount == 0:
        return
    token = importlib.import_module(metadata['payment_token'])
    token.transfer_from(amount=amount, to=ctx.this, main_account=ctx.caller)
    treasury.set(treasury.get() + amount)

# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

def create(owner, token_id):
    assert owners[token_id] is None, 'RegistryConflict: token ' + str(token_id) + ' already exists'

    owners[token_id] = owner
    balances[owner] = balances[owner] + 1

    TransferEvent({'from': NULL_ADDRESS, 'to': owner, 'token_id': token_id})

def move(from_address, to, token_id):
    assert owners[token_id] == from_address, 'NotOwner: ' + from_address + ' does not own token ' + str(token_id)

    owners[token_id] = to
    balances[from_address] = balances[from_address] - 1
    balances[to] = balances[to] + 1
    token_approvals[token_id] = None

    TransferEvent({'from': from_address, 'to': to, 'token_id': token_id})

@export
def exists(token_id: int):
    return owners[token_id] is not None

@export
def owner_of(token_id: int):
    owner = owners[token_id]
    assert owner is not None, 'NotFound: token ' + str(token_id) + ' does not exist'
    return owner

@export
def balance_of(address: str):
    return balances[address]

@export
def total_supply():
    return supply['issued'] + supply['reserved']

@export
def transfer(to: str, token_id: int):
    move(ctx.caller, to, token_id)

@export
def approve(to: str, token_id: int):
    owner = owners[token_id]
    assert owner == ctx.caller, 'NotOwner: only the owner can approve'

    token_approvals[token_id] = to
    ApprovalEvent({'owner': owner, 'approved': to, 'token_id': token_id})

@export
def get_approved(token_id: int):
    return token_approvals[token_id]

@export
def transfer_from(from_address: str, to: str, token_id: int):
    assert ctx.caller == from_address or token_approvals[token_id] == ctx.caller, 'NotApproved: caller may not move token ' + str(token_id)
    move(from_address, to, token_id)

# -----------------------------------------------------------------------------
# Metadata resolver
# -----------------------------------------------------------------------------

@export
def token_uri(token_id: int):
    assert owners[token_id] is not None, 'NotFound: token ' + str(token_id) + ' does not exist'

    for r in metadata['uri_ranges']:
        if r['start'] <= token_id <= r['end']:
            return r['uri'] + str(token_id)
    return metadata['base_uri'] + str(token_id)

@export
def set_base_uri(uri: str):
    require_operator()
    metadata['base_uri'] = uri

@export
def set_range_uri(start: int, end: int, uri: str):
    require_operator()
    assert 0 < start <= end, 'InvalidConfig: bad token range'

    ranges = metadata['uri_ranges']
    ranges.append({'start': start, 'end': end, 'uri': uri})
    metadata['uri_ranges'] = ranges

@export
def clear_range_uris():
    require_operator()
    metadata['uri_ranges'] = []

# -----------------------------------------------------------------------------
# Roles
# -----------------------------------------------------------------------------

def require_operator():
    assert ctx.caller == metadata['operator'], 'Unauthorized: only operator'

@export
def has_role(role: str, account: str):
    return roles[role, account]

@export
def grant_role(role: str, account: str):
    require_operator()
    assert role in ROLES, 'InvalidConfig: unknown role ' + role

    roles[role, account] = True
    RoleGrantedEvent({'role': role, 'account': account, 'by': ctx.caller})

@export
def revoke_role(role: str, account: str):
    require_operator()
    assert role in ROLES, 'InvalidConfig: unknown role ' + role

    roles[role, account] = False
    RoleRevokedEvent({'role': role, 'account': account, 'by': ctx.caller})

@export
def set_issuer(account: str):
    require_operator()

    previous = metadata['issuer']
    if previous is not None and previous != account:
        roles[ISSUER_ROLE, previous] = False
        RoleRevokedEvent({'role': ISSUER_ROLE, 'account': previous, 'by': ctx.caller})

    metadata['issuer'] = account
    roles[ISSUER_ROLE, account] = True
    RoleGrantedEvent({'role': ISSUER_ROLE, 'account': account, 'by': ctx.caller})

@export
def transfer_operator(new_operator: str):
    require_operator()
    metadata['operator'] = new_operator

# -----------------------------------------------------------------------------
# Core: voucher redemption
# -----------------------------------------------------------------------------

@export
def redeem(voucher: dict, payment: int):
    assert metadata['redemption_enabled'], 'RedemptionDisabled: redemption is not enabled'

    redeemer = ctx.caller
    voucher_id, quantity, unit_price, signature = unpack_voucher(voucher)

    digest = compute_digest(voucher_id, quantity, unit_price)
    signer = recover_signer(digest, signature)
    assert roles[ISSUER_ROLE, signer], 'Unauthorized: voucher signer is not an issuer'

    check_batch(quantity)

    issued = supply['issued']
    check_supply(quantity, issued, metadata['max_supply'])
    check_payment(payment, quantity, unit_price)

    assert not redeemed[voucher_id], 'AlreadyRedeemed: voucher ' + str(voucher_id) + ' was already used'
    redeemed[voucher_id] = True

    collect_payment(payment)

    token_ids = []
    for i in range(quantity):
        token_id = issued + i + 1
        # provenance: issuer first, then the redeemer
        create(signer, token_id)
        move(signer, redeemer, token_id)
        supply['issued'] = token_id
        token_ids.append(token_id)

    VoucherRedeemedEvent({
        'voucher_id': voucher_id,
        'signer': signer,
        'redeemer': redeemer,
        'quantity': quantity,
        'first_token_id': issued + 1,
        'payment': payment
    })

    return token_ids

# -----------------------------------------------------------------------------
# Administration
# -----------------------------------------------------------------------------

@export
def set_redemption_enabled(enabled: bool):
    require_operator()
    metadata['redemption_enabled'] = enabled

@export
def set_unit_price(unit_price: int):
    require_operator()
    assert metadata['price_policy'] == PRICE_EXACT, 'WrongMode: floor-price vouchers carry their own price'
    assert unit_price >= 0, 'InvalidConfig: negative unit price'
    metadata['unit_price'] = unit_price

@export
def get_withdrawable():
    return treasury.get()

def can_withdraw(account):
    return account == metadata['operator'] or roles[WITHDRAWER_ROLE, account]

@export
def withdraw(amount: int, to: str):
    assert can_withdraw(ctx.caller), 'Unauthorized: caller may not withdraw'
    assert can_withdraw(to), 'Unauthorized: recipient may not receive withdrawals'
    assert amount > 0, 'InsufficientBalance: amount must be positive'

    balance = treasury.get()
    assert amount <= balance, 'InsufficientBalance: only ' + str(balance) + ' withdrawable'

    treasury.set(balance - amount)
    token = importlib.import_module(metadata['payment_token'])
    token.transfer(amount=amount, to=to)

    WithdrawalEvent({'to': to, 'amount': amount, 'by': ctx.caller})

# -----------------------------------------------------------------------------
# Reserved allocations
# -----------------------------------------------------------------------------

def mint_reserved_ids(first, count):
    operator = metadata['operator']

    # reserved ids may have been populated out of band
    for token_id in range(first, first + count):
        assert owners[token_id] is None, 'RegistryConflict: token ' + str(token_id) + ' already exists'

    token_ids = []
    for token_id in range(first, first + count):
        create(operator, token_id)
        token_ids.append(token_id)

    supply['reserved'] = supply['reserved'] + count
    return token_ids

@export
def mint_reserved(quantity: int):
    require_operator()
    assert metadata['reserved_mode'] == RESERVED_SEQUENTIAL, 'WrongMode: reserved range is minted by section'
    assert quantity > 0, 'ZeroQuantity: quantity must be at least 1'

    minted = supply['reserved']
    assert minted + quantity <= metadata['reserved_supply'], 'ReservedSupplyExceeded: only ' + str(metadata['reserved_supply'] - minted) + ' reserved tokens left'

    return mint_reserved_ids(metadata['max_supply'] + minted + 1, quantity)

@export
def mint_reserved_section(section: int):
    require_operator()
    assert metadata['reserved_mode'] == RESERVED_SECTION, 'WrongMode: reserved range is minted sequentially'

    size = metadata['reserved_section_size']
    assert 0 <= section < metadata['reserved_supply'] // size, 'ReservedSupplyExceeded: no reserved section ' + str(section)
    assert not reserved_sections[section], 'SectionAlreadyMinted: section ' + str(section) + ' was already minted'

    reserved_sections[section] = True
    return mint_reserved_ids(metadata['max_supply'] + section * size + 1, size)
