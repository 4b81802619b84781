"""
ERC-20 Transfer ABI Module

Simplified ABI definitions for the ERC-20 calls the payout pipeline makes.

Usage:
    from ERC20_ABI import get_transfer_abi, abi_signature

    transfer_abi = get_transfer_abi()
    abi_signature(transfer_abi[0])  # "transfer(address,uint256)"
"""

from typing import Dict, Any, List


def get_transfer_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for ERC-20 ``transfer(to, amount)``.

    Returns:
        List[Dict[str, Any]]: ABI for the ``transfer`` function.

    Example:
        abi = get_transfer_abi()
        contract = web3.eth.contract(address=token_address, abi=abi)
        calldata = contract.encode_abi("transfer", args=[to, amount])
    """
    return [
        {
            "name": "transfer",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "to", "type": "address"},
                {"name": "amount", "type": "uint256"},
            ],
            "outputs": [{"name": "", "type": "bool"}],
        }
    ]


def abi_input_types(entry: Dict[str, Any]) -> List[str]:
    """Canonical input types of an ABI function entry, in order."""
    return [item["type"] for item in entry.get("inputs", [])]


def abi_signature(entry: Dict[str, Any]) -> str:
    """
    Canonical text signature of an ABI function entry.

    Example:
        abi_signature(get_transfer_abi()[0])  # "transfer(address,uint256)"
    """
    return f"{entry['name']}({','.join(abi_input_types(entry))})"
