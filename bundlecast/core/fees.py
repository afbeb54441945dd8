"""
Base fee projection (EIP-1559).

Integer arithmetic only; each division truncates like the protocol formula.
"""

BASE_FEE_MAX_CHANGE_DENOMINATOR = 8

# 12.5% maximum increase per block, expressed as a ratio over 1000
_MAX_INCREASE_NUMERATOR = 1125
_MAX_INCREASE_DENOMINATOR = 1000


def project_max_base_fee(current_base_fee: int, blocks_ahead: int) -> int:
    """Upper bound of the base fee ``blocks_ahead`` blocks from now.

    Every block is assumed full, so the fee compounds at the maximum rate;
    the ``+ 1`` rounds each step up.
    """
    if blocks_ahead < 0:
        raise ValueError("blocks_ahead must be non-negative")

    max_base_fee = current_base_fee
    for _ in range(blocks_ahead):
        max_base_fee = max_base_fee * _MAX_INCREASE_NUMERATOR // _MAX_INCREASE_DENOMINATOR + 1
    return max_base_fee


def project_next_base_fee(current_base_fee: int, gas_used: int, gas_limit: int) -> int:
    """Base fee of the next block given this block's gas usage."""
    gas_target = gas_limit // 2
    if gas_target <= 0:
        raise ValueError("gas_limit must be at least 2")

    if gas_used == gas_target:
        return current_base_fee

    if gas_used > gas_target:
        gas_used_delta = gas_used - gas_target
        base_fee_delta = current_base_fee * gas_used_delta // gas_target // BASE_FEE_MAX_CHANGE_DENOMINATOR
        return current_base_fee + base_fee_delta

    gas_used_delta = gas_target - gas_used
    base_fee_delta = current_base_fee * gas_used_delta // gas_target // BASE_FEE_MAX_CHANGE_DENOMINATOR
    return current_base_fee - base_fee_delta
