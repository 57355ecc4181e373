"""Arbitrary-precision number helpers for the game economy.

Every amount, rate, cost and multiplier in the engine is a ``Decimal``.
Arithmetic goes through the helpers below so that it always runs in the
widened ``CONTEXT`` rather than whatever decimal context the calling
thread happens to have.
"""
from decimal import (
    Context, Decimal, InvalidOperation, MAX_EMAX, MIN_EMIN, ROUND_FLOOR,
    ROUND_HALF_EVEN, DivisionByZero, Overflow,
)

PRECISION = 50

CONTEXT = Context(
    prec=PRECISION,
    rounding=ROUND_HALF_EVEN,
    Emax=MAX_EMAX,
    Emin=MIN_EMIN,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

ZERO = Decimal(0)
ONE = Decimal(1)
TWO = Decimal(2)
TEN = Decimal(10)


def D(value):
    """Coerce a number-like value to a finite Decimal.

    None, empty strings, unparsable strings, NaN and infinities all become
    ZERO. Floats are converted through ``str`` so 0.1 stays 0.1.
    """
    if isinstance(value, Decimal):
        result = value
    elif value is None or isinstance(value, bool):
        return ZERO if value is None else Decimal(int(value))
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        try:
            result = Decimal(repr(value))
        except InvalidOperation:
            return ZERO
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return ZERO
        try:
            result = Decimal(text)
        except InvalidOperation:
            return ZERO
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


def add(a, b):
    return CONTEXT.add(D(a), D(b))


def sub(a, b):
    return CONTEXT.subtract(D(a), D(b))


def mul(a, b):
    return CONTEXT.multiply(D(a), D(b))


def div(a, b):
    """Divide a by b; a zero divisor gives ZERO instead of raising."""
    divisor = D(b)
    if divisor.is_zero():
        return ZERO
    return CONTEXT.divide(D(a), divisor)


def pow(a, b):
    """Raise a to the power b.

    Integral exponents are exact up to precision. A fractional exponent of
    a negative base has no real result and gives ZERO.
    """
    base = D(a)
    exponent = D(b)
    if exponent.is_zero():
        return ONE
    if base.is_zero():
        return ZERO
    if base < 0 and exponent != exponent.to_integral_value():
        return ZERO
    try:
        return CONTEXT.power(base, exponent)
    except (InvalidOperation, Overflow):
        return ZERO


def neg(a):
    return CONTEXT.minus(D(a))


def gt(a, b):
    return D(a) > D(b)


def gte(a, b):
    return D(a) >= D(b)


def lt(a, b):
    return D(a) < D(b)


def lte(a, b):
    return D(a) <= D(b)


def eq(a, b):
    return D(a) == D(b)


def dmin(a, b):
    a, b = D(a), D(b)
    return a if a <= b else b


def dmax(a, b):
    a, b = D(a), D(b)
    return a if a >= b else b


def clamp(value, low, high):
    return dmin(dmax(value, low), high)


def floor(a):
    return D(a).to_integral_value(rounding=ROUND_FLOOR, context=CONTEXT)


def is_finite(a):
    return isinstance(a, Decimal) and a.is_finite()


def to_float(a):
    """Convert to float for ratios and display; huge values become inf."""
    return float(D(a))


def dsum(values):
    total = ZERO
    for value in values:
        total = add(total, value)
    return total


def dprod(values):
    total = ONE
    for value in values:
        total = mul(total, value)
    return total


# Economy formulas

def exponential_cost(base_cost, multiplier, owned):
    """Cost of the next unit when ``owned`` units are already held."""
    return mul(base_cost, pow(multiplier, owned))


def bulk_cost(base_cost, multiplier, owned, count):
    """Total cost of buying ``count`` units starting at ``owned``."""
    if count <= 0:
        return ZERO
    base = D(base_cost)
    mult = D(multiplier)
    if mult == ONE:
        return mul(base, count)
    first = exponential_cost(base, mult, owned)
    return div(mul(first, sub(pow(mult, count), ONE)), sub(mult, ONE))


def max_affordable(available, base_cost, multiplier, owned):
    """Largest count whose bulk cost fits in ``available``."""
    avail = D(available)
    base = D(base_cost)
    mult = D(multiplier)
    if avail <= 0 or base <= 0:
        return 0
    if mult == ONE:
        return int(floor(div(avail, base)))
    if mult < ONE:
        # Costs shrink with each purchase; bound it the slow way.
        count = 0
        while count < 10000 and bulk_cost(base, mult, owned, count + 1) <= avail:
            count += 1
        return count

    current = exponential_cost(base, mult, owned)
    ratio = add(div(mul(avail, sub(mult, ONE)), current), ONE)
    estimate = int(floor(div(CONTEXT.ln(ratio), CONTEXT.ln(mult))))
    count = max(0, estimate)
    # The log estimate can be one off either way at the precision limit.
    while count > 0 and bulk_cost(base, mult, owned, count) > avail:
        count -= 1
    while bulk_cost(base, mult, owned, count + 1) <= avail:
        count += 1
    return count


# Serialization

def serialize(value):
    return str(D(value))


def deserialize(value):
    if value is None or value == '':
        return ZERO
    return D(value)


def is_valid_number_string(value):
    """True for strings that parse to a finite Decimal."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return False
    return parsed.is_finite()
