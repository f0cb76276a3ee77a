"""
Example custom prelude for semrew.

A prelude maps operator names to fold handlers. Guards and (! op ...)
compute forms in templates can use every operator defined here.

Usage:
    semrew -p examples/custom_prelude.py -e "(gcd 12 8)"

Or in scripts:
    :prelude examples/custom_prelude.py
    @gcd: (gcd ?a:const ?b:const) => (! gcd ?a ?b)
    (gcd 12 8)
"""

import math

from semrew import FULL_PRELUDE, binary_only, is_scalar, nary_fold, predicate, unary_only

PRELUDE = {
    **FULL_PRELUDE,

    # Number theory
    "gcd": nary_fold(0, math.gcd),
    "mod": binary_only(lambda a, b: a % b),
    "factorial": unary_only(math.factorial),

    "min": nary_fold(None, min),
    "max": nary_fold(None, max),

    # Guards
    "even?": predicate(lambda x: is_scalar(x) and x % 2 == 0),
    "odd?": predicate(lambda x: is_scalar(x) and x % 2 == 1),
}
