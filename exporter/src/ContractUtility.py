"""ContractUtility: Web3 initialization and contract ABI loading."""

import json
from pathlib import Path

from web3 import Web3
from web3.contract import Contract

from .Errors import OracleValidationError


class ContractUtility:
    """Utility for Web3 connection and contract access.

    :ivar rpc_url: Node RPC URL.
    :ivar w3: Configured Web3 instance.
    """

    def __init__(self, rpc_url: str, request_timeout: float = 10.0) -> None:
        """Initialize the contract utility.

        :param rpc_url: HTTP(S) RPC endpoint of the node.
        :param request_timeout: Per-request timeout in seconds (default: 10.0).
        """
        self.rpc_url = rpc_url
        self.w3 = Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )

    @staticmethod
    def get_abi(contract_name: str) -> list:
        """Load a contract ABI from the contracts folder.

        :param contract_name: Name of the contract (e.g., "Oracle").
        :returns: ABI as a list of entries.
        """
        output_path = (
            Path(__file__).parent.parent / "contracts" / f"{contract_name}.json"
        ).resolve()

        with open(output_path, "r") as file:
            contract_data = json.load(file)

        return contract_data["abi"]

    def contract(self, address: str, contract_name: str) -> Contract:
        """Bind a contract ABI to an address.

        :param address: Contract address (any case).
        :param contract_name: Name of the ABI file to use.
        :returns: Web3 contract instance.
        """
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=self.get_abi(contract_name),
        )

    def validate_oracle(self, address: str) -> str:
        """Confirm an address is an oracle contract by reading its owner.

        :param address: Oracle contract address.
        :returns: The oracle owner address.
        :raises OracleValidationError: If the owner cannot be read.
        """
        oracle = self.contract(address, "Oracle")
        try:
            return oracle.functions.owner().call()
        except Exception as e:
            raise OracleValidationError(
                f"address {address} does not belong to an oracle: {e}"
            ) from e
