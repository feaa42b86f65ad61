"""
Conversion between human-readable stable-currency amounts and base units.

Amounts travel through the service as integers in the smallest unit of the
currency. The decimal form only exists at the HTTP boundary.
"""
from decimal import Decimal, InvalidOperation

from gifts.errors import GiftValidationError

DEFAULT_DECIMALS = 6


def to_base_units(amount: str, decimals: int = DEFAULT_DECIMALS) -> int:
    """Parse a decimal string such as ``"12.50"`` into base units.

    Raises GiftValidationError for non-numeric input, non-positive values and
    values carrying more precision than the currency supports.
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise GiftValidationError(f'Invalid amount: {amount!r}') from exc

    if not value.is_finite():
        raise GiftValidationError(f'Invalid amount: {amount!r}')
    if value <= 0:
        raise GiftValidationError('Amount must be greater than zero.')

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise GiftValidationError(
            f'Amount {amount} has more than {decimals} decimal places.')
    return int(scaled)


def from_base_units(units: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Render base units in canonical form.

    Trailing zeros are trimmed down to a minimum of two decimals, so
    ``"12.5"`` and ``"12.500"`` both come back as ``"12.50"``. Strings already
    in this form survive ``to_base_units`` unchanged.
    """
    value = Decimal(int(units)).scaleb(-decimals)
    text = f'{value:.{decimals}f}'
    whole, _, fraction = text.partition('.')
    fraction = fraction.rstrip('0')
    if len(fraction) < 2:
        fraction = fraction.ljust(2, '0')
    return f'{whole}.{fraction}'
