"""Default Polygon deployment addresses for the conditional-order contracts."""

# ComposableCoW registry and the Polyswap conditional-order handler
COMPOSABLE_COW = "0xfdaFc9d1902f4e0b84f65F49f244b32b31013b74"
POLYSWAP_HANDLER = "0x0000000000000000000000000000000000000000"
VALUE_FACTORY = "0x52eD56Da04309Aca4c3FECC595298d80C2f16BAc"

# Safe modules
EXTENSIBLE_FALLBACK_HANDLER = "0x2f55e8b20D0B9FEFA187AA7d00B6Cbe563605bF5"
MULTISEND_CALL_ONLY = "0x40A2aCCbd92BCA938b02010E17A5b8929b49130D"

COW_VAULT_RELAYER = "0xC92E8bdf79f0507f65a392b0ab4667716BFE0110"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = "0x" + "00" * 32

MAX_UINT256 = 2**256 - 1

# keccak256("fallback_manager.handler.address")
FALLBACK_HANDLER_STORAGE_SLOT = (
    "0x6c9a6c4a39284e37ed1cf53d337577d14212a4870fb976a4366c693b939918d5"
)

EIP1271_MAGIC_VALUE = "0x1626ba7e"
