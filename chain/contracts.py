"""Read-only views of the allocator and client contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from core.errors import TransportFailure
from core.logger import StructuredLogger
from datacap.actions import contract_units_to_deviation
from datacap.addresses import evm_address_of

LOG = StructuredLogger("contracts")


@dataclass(frozen=True)
class ClientConfig:
    max_deviation: int

    @property
    def percentage(self) -> str:
        return contract_units_to_deviation(self.max_deviation)


class ContractReader:
    """``eth_call`` wrappers; failures surface as :class:`TransportFailure`."""

    def __init__(self, gateway) -> None:
        self.gateway = gateway

    def _evm(self, address: str) -> str:
        """EVM form of ``address``, asking the node when it cannot be derived offline."""
        return evm_address_of(address) or self.gateway.to_evm_address(address)

    def _call(self, to: str, signature: str, arg_types: Sequence[str], args: Sequence, out: Sequence[str]) -> Tuple:
        data = function_signature_to_4byte_selector(signature) + abi_encode(list(arg_types), list(args))
        raw = self.gateway.static_call(self._evm(to), data)
        try:
            return tuple(abi_decode(list(out), raw))
        except (DecodingError, ValueError, OverflowError) as exc:
            LOG.log("contract_read_failed", contract=to, call=signature, error=str(exc))
            raise TransportFailure(f"{signature} on {to}: {exc}") from exc

    def allowance(self, allocator: str, verifier: str) -> int:
        """Datacap the allocator contract still lets ``verifier`` grant."""
        (value,) = self._call(
            allocator, "allowance(address)", ["address"], [self._evm(verifier)], ["uint256"]
        )
        return int(value)

    def client_allowance(self, client_contract: str, client: str) -> int:
        """Remaining datacap the client contract holds for ``client`` (``allowances``)."""
        (value,) = self._call(
            client_contract, "allowances(address)", ["address"], [self._evm(client)], ["uint256"]
        )
        return int(value)

    def client_sps(self, client_contract: str, client: str) -> List[int]:
        (providers,) = self._call(
            client_contract, "clientSPs(address)", ["address"], [self._evm(client)], ["uint256[]"]
        )
        return [int(p) for p in providers]

    def client_config(self, client_contract: str, client: str) -> ClientConfig:
        (deviation,) = self._call(
            client_contract, "clientConfigs(address)", ["address"], [self._evm(client)], ["uint256"]
        )
        return ClientConfig(int(deviation))
