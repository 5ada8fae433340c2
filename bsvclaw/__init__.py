"""
bsvclaw: a pay-per-answer agent on BSV.

Requesters broadcast a JOB (prompt + payment to the agent); the agent answers
with a RES transaction that spends the payment, minus a flat fee, back to
itself and back-references the request.
"""

__version__ = "0.1.0"

from bsvclaw.config import ClawConfig
from bsvclaw.errors import ClawError
from bsvclaw.schema import FailedJob, SettledJob
from bsvclaw.wallet import AgentWallet

__all__ = [
    "__version__",
    "ClawConfig",
    "ClawError",
    "AgentWallet",
    "SettledJob",
    "FailedJob",
]
