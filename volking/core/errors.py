"""
Exception types raised by the transport and client layers

Pipeline services catch these and turn them into result records.
"""


class VolkingError(Exception):
    """Base class for engine errors"""


class RPCError(VolkingError):
    """All RPC endpoints failed, or the node returned a JSON-RPC error"""


class TransactionError(VolkingError):
    """Submission exhausted its retries or the transaction failed on-chain"""

    def __init__(self, message: str, signature: str = ""):
        super().__init__(message)
        self.signature = signature


class ConfirmationTimeout(TransactionError, TimeoutError):
    """Confirmation polling ran past its deadline"""


class PumpPortalError(VolkingError):
    """Fee-collection API rejected the request or returned no transaction"""


class JupiterError(VolkingError):
    """Swap quote or swap build failed"""


class InvalidTransition(VolkingError):
    """Requested orchestrator action is not allowed in the current phase"""
