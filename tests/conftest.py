"""
Shared pytest fixtures for the Navigator Vault test suite.

The KDF is configured with the smallest costs argon2 accepts so that the
suite stays fast; production limits are exercised in test_kdf.py.
"""
import pytest

from navigator_vault import (
    CredentialStore,
    IOFailure,
    KDFLimits,
    KDFParams,
    MemoryStorage,
    VaultConfig,
)

PASSPHRASE = "Tr0ub4dor!x"
NEW_PASSPHRASE = "N3w&Improved!"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyStorage(MemoryStorage):
    """MemoryStorage whose writes can be made to fail or to wait.

    When ``gate`` is an ``asyncio.Event``, every put sets ``writing`` and
    blocks until the gate opens.
    """

    def __init__(self):
        super().__init__()
        self.fail_puts = False
        self.fail_key = None
        self.gate = None
        self.writing = None

    async def put(self, key: str, data: bytes) -> None:
        if self.fail_puts or key == self.fail_key:
            raise IOFailure(f"Injected write failure for key {key}")
        if self.gate is not None:
            self.writing.set()
            await self.gate.wait()
        await super().put(key, data)


FAST_KDF = KDFParams(memory_cost=64, time_cost=1, parallelism=1)
FAST_LIMITS = KDFLimits(min_memory_cost=8, min_time_cost=1)


@pytest.fixture
def config():
    return VaultConfig(kdf=FAST_KDF, kdf_limits=FAST_LIMITS, idle_timeout=900)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FlakyStorage()


@pytest.fixture
def store(storage, config, clock):
    return CredentialStore(storage, config=config, clock=clock)
