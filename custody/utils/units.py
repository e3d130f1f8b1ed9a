"""
Base-unit conversion.

Exact conversion between on-chain integer units (lamports, wei, sun,
token base units) and human Decimal amounts.
"""

from decimal import ROUND_DOWN, Decimal, localcontext

# Enough digits for any uint256 value
_PRECISION = 80


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce a numeric value to Decimal without passing through float.

    Args:
        value: Decimal, int or numeric string

    Returns:
        Decimal value

    Raises:
        TypeError: If value is a float
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Float amounts are not accepted, use Decimal or str")
    return Decimal(str(value))


def from_base_units(raw: int, decimals: int) -> Decimal:
    """
    Convert integer base units to a human amount.

    Args:
        raw: Amount in base units (e.g. lamports)
        decimals: Asset decimal count

    Returns:
        Exact Decimal amount

    Examples:
        >>> from_base_units(1_000_000_000, 9) == Decimal("1")
        True
    """
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(raw)).scaleb(-decimals)


def to_base_units(amount: Decimal | int | str, decimals: int) -> int:
    """
    Convert a human amount to integer base units.

    Digits beyond the asset's decimal count are truncated (ROUND_DOWN).

    Args:
        amount: Human amount
        decimals: Asset decimal count

    Returns:
        Integer base units
    """
    value = to_decimal(amount)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        quantum = Decimal(1).scaleb(-decimals)
        truncated = value.quantize(quantum, rounding=ROUND_DOWN)
        return int(truncated.scaleb(decimals))


def truncate(amount: Decimal, decimals: int) -> Decimal:
    """
    Truncate an amount to the asset's decimal count.

    Args:
        amount: Human amount
        decimals: Asset decimal count

    Returns:
        Truncated Decimal
    """
    return from_base_units(to_base_units(amount, decimals), decimals)
