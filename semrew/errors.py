"""
Exception types raised by semrew.

Match failures and guard rejections are never exceptions: they show up as
an empty substitution iterator or as ``None`` from ``apply_rule``. Only
contract violations at rule-definition time, malformed s-expressions and
an exhausted opt-in step bound are raised.
"""


class SemrewError(Exception):
    """Base class for all semrew errors."""


class RuleConstructionError(SemrewError, ValueError):
    """A rule could not be built from its pattern, transform or guard."""


class SexprSyntaxError(SemrewError, ValueError):
    """Malformed s-expression text."""


class RewriteLimitExceeded(SemrewError, RuntimeError):
    """
    Raised when normalization exceeds its ``max_steps`` bound.

    The expression reached so far is kept on ``partial`` so callers can
    inspect how far rewriting got before giving up.
    """

    def __init__(self, max_steps: int, partial=None):
        super().__init__(f"Rewriting did not reach a normal form within {max_steps} steps")
        self.max_steps = max_steps
        self.partial = partial
