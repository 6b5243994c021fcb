import pytest
from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from bot.hubs import AaveHubAssets, StaticHubAssets

POOL = "0xA238Dd80C259a72e81d7e4664a9801593F98d1c5"
WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class FakeRpc:
    def __init__(self, reserves) -> None:
        self.reserves = reserves
        self.calls = []

    async def eth_call(self, to, data, block="latest"):
        self.calls.append((to, data))
        return "0x" + encode(["address[]"], [self.reserves]).hex()


@pytest.mark.asyncio
async def test_static_hubs() -> None:
    hubs = StaticHubAssets([WETH, " ", USDC])
    assert await hubs.get_hub_assets() == {WETH, USDC}


@pytest.mark.asyncio
async def test_aave_reserves_list() -> None:
    rpc = FakeRpc([WETH.lower(), USDC.lower()])
    hubs = AaveHubAssets(rpc, POOL.lower(), extra=["0xpinned"])
    assets = await hubs.get_hub_assets()

    assert assets == {to_checksum_address(WETH), to_checksum_address(USDC), "0xpinned"}
    to, data = rpc.calls[0]
    assert to == POOL
    assert data == "0x" + keccak(text="getReservesList()")[:4].hex()


@pytest.mark.asyncio
async def test_configured_hubs_are_checksummed() -> None:
    static = StaticHubAssets([USDC.lower(), " WETH-SYMBOL "])
    assert await static.get_hub_assets() == {USDC, "WETH-SYMBOL"}

    rpc = FakeRpc([WETH])
    aave = AaveHubAssets(rpc, POOL, extra=[USDC.lower()])
    assert await aave.get_hub_assets() == {WETH, USDC}
