"""
Static per-network contract tables.

Loaded as configuration only; nothing mutates these at runtime. Roles:
orderbook, executor, messaging, currency, collectible.
"""

from types import MappingProxyType

# Chain ids are the ASCII network names packed into a felt.
CHAIN_IDS = MappingProxyType({
    "development": 0x4b4154414e41,             # KATANA
    "staging": 0x534e5f5345504f4c4941,         # SN_SEPOLIA
    "production": 0x534e5f4d41494e,            # SN_MAIN
    "legacy": 0x534e5f474f45524c49,            # SN_GOERLI
})

NETWORK_ALIASES = MappingProxyType({
    "dev": "development",
    "development": "development",
    "sepolia": "staging",
    "staging": "staging",
    "mainnet": "production",
    "production": "production",
    "goerli": "legacy",
    "legacy": "legacy",
})

DEV_CONTRACTS = MappingProxyType({
    "messaging": "0x3cb72f2da873bf35672d719161aabfebcd3a021b717cfbde576c43f58791704",
    "executor": "0x4976035b0b9b4a651751508b8df0ee054f2b25427625949ffc6487ea4439fa",
    "collectible": "0x42c3bf5aa286bf34be0f7ab7312ad90c485134343a35c004091bd61b1267c6e",
    "currency": "0x200184bde479ccffa50a89485417c907bc1d3779f9b1863d2158733135facce",
    "orderbook": "0x34b25722ae80d1ca27555f6297237171570876974e62e7ef612e9942d08624c",
})

# Not deployed yet; use ARK_CONTRACT_OVERRIDES until the table is published.
STAGING_CONTRACTS = MappingProxyType({})

PRODUCTION_CONTRACTS = MappingProxyType({
    "collectible": "0x32d99485b22f2e58c8a0206d3b3bb259997ff0db70cffd25585d7dd9a5b0546",
    "messaging": "0x57d45cc46de463f7ae63b74ce9b6b6b496a1178b02e7ad04d7c307caa698b7b",
    "executor": "0x7b42945bc47001db92fe1b9739d753925263f2f1036c2ae1f87536c916ee6a",
    "orderbook": "0x785873b81c8a3f076270868418c783e8faa5f2b86b87a1754947c650868feb8",
})

LEGACY_CONTRACTS = MappingProxyType({
    "collectible": "0x22411b480425fe6e627fdf4d1b6ac7f8567314ada5617a0a6d8ef3e74b69436",
    "messaging": "0x2c3d3e0c37d29364a13ba8cff046e7bc5624655a72526961876a1c8bb3f63c8",
    "executor": "0x73148536f8ea9546e92761d11515548cc433df46883d5ee98871a6f63a0bbbc",
    "orderbook": "0x66f1e6acf9bdbd23837b2eea271430298b355c506978edb132737e7fcb6b310",
})

NETWORK_CONTRACTS = MappingProxyType({
    "development": DEV_CONTRACTS,
    "staging": STAGING_CONTRACTS,
    "production": PRODUCTION_CONTRACTS,
    "legacy": LEGACY_CONTRACTS,
})
