"""Configuration models for the tracker."""

from __future__ import annotations

from dataclasses import dataclass, field

from stfuel_tracker.models.events import ContractRole

# ~24h of Theta blocks at 3s
DEFAULT_UNBONDING_BLOCKS = 28_800


@dataclass
class ContractConfig:
    """One ingested contract and where its stream starts."""

    role: ContractRole
    address: str
    start_block: int = 0


@dataclass
class TrackerConfig:
    """Complete tracker configuration."""

    # Tracker
    poll_interval: int = 5  # seconds
    error_backoff: int = 10  # seconds
    log_level: str = "info"

    # Chain
    rpc_url: str = "https://eth-rpc-api-testnet.thetatoken.org/rpc"
    node_manager_address: str = ""
    stfuel_address: str = ""
    start_block: int = 0
    batch_size: int = 10  # blocks per eth_getLogs call
    confirmations: int = 0
    rpc_timeout: int = 30  # seconds
    rpc_retries: int = 3

    # Projection
    unbonding_blocks: int = DEFAULT_UNBONDING_BLOCKS
    storage_retries: int = 3
    retry_backoff: float = 0.5  # seconds

    # Snapshots
    snapshots_enabled: bool = True
    snapshot_tick: int = 60  # seconds between aggregator ticks

    # Storage
    db_path: str = "~/.stfuel_tracker/state.db"

    contracts: list[ContractConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.node_manager_address = self.node_manager_address.lower()
        self.stfuel_address = self.stfuel_address.lower()
        if not self.contracts:
            self.contracts = self.build_contracts()

    def build_contracts(self) -> list[ContractConfig]:
        contracts = []
        if self.node_manager_address:
            contracts.append(ContractConfig(
                ContractRole.NODE_MANAGER, self.node_manager_address, self.start_block,
            ))
        if self.stfuel_address:
            contracts.append(ContractConfig(
                ContractRole.TOKEN, self.stfuel_address, self.start_block,
            ))
        return contracts

    def role_for(self, contract_address: str) -> ContractRole | None:
        address = contract_address.lower()
        for contract in self.contracts:
            if contract.address == address:
                return contract.role
        return None
