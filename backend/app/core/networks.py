"""Deployment environments and the contract addresses that belong to them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NetworkName(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    name: NetworkName
    display_name: str
    chain_id: str
    explorer_url: str
    tonapi_url: str
    master_oracle: str
    fee_distributor: str
    token_master: str

    def explorer_link(self, address: str) -> str:
        return f"{self.explorer_url}/{address}"


TESTNET = NetworkConfig(
    name=NetworkName.TESTNET,
    display_name="Testnet",
    chain_id="-3",
    explorer_url="https://testnet.tonviewer.com",
    tonapi_url="https://testnet.tonapi.io/v2",
    master_oracle="kQBO-cZMdJU0lxlH1bBF8Mn7AjF5SQenaqRkq0_a5JPcqLbf",
    fee_distributor="kQAeRl5W6SpCoQwjXzFz-iYDNI8Td8XC4O0K3rmYNvoM9LVF",
    token_master="kQDiGlipbnCEHokWD7984TwKSjy52X5O_omWhVbw5FH4jeWf",
)

MAINNET = NetworkConfig(
    name=NetworkName.MAINNET,
    display_name="Mainnet",
    chain_id="-239",
    explorer_url="https://tonviewer.com",
    tonapi_url="https://tonapi.io/v2",
    master_oracle="EQB4nPFKiajN2M_5ZTo83MQ9rRMUzPq0pkSEU33RH877cW3J",
    fee_distributor="EQBplZMDqiykFOIcME0LtYwe55p1SJ9YxKNjXnPs7n6mVHxE",
    token_master="EQD529CGTmX1Tgcsn3vYBfUPKrVdgermb1T8o5MKLGOGdHpb",
)

NETWORKS: dict[NetworkName, NetworkConfig] = {
    NetworkName.MAINNET: MAINNET,
    NetworkName.TESTNET: TESTNET,
}


def get_network_config(name: NetworkName | str) -> NetworkConfig:
    try:
        return NETWORKS[NetworkName(name)]
    except ValueError as exc:
        raise ValueError(f"Unknown network '{name}'") from exc


__all__ = ["NetworkName", "NetworkConfig", "NETWORKS", "get_network_config"]
