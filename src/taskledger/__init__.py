"""taskledger — task lifecycle and quorum-consensus settlement.

A single ledger instance hosts three contracts (application registry,
operator directory, task registry) that share a two-step ownership
authority. Operators execute work off-ledger and sign claims about the
outcome; the aggregation service collects those claims, applies the
agreement rule and is the only identity allowed to settle a task.
"""

__version__ = "0.1.0"
