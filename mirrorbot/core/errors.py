"""
Error taxonomy

ClassificationError: transaction evidence is insufficient or ambiguous; the event is dropped.
ExternalCallError: an RPC, quote, swap or metadata call failed; retried naturally on the next event or sweep.
ConfigurationError: invalid settings, fatal at startup.
"""


class MirrorBotError(Exception):
    """Base class for all bot errors"""


class ClassificationError(MirrorBotError):
    """Raised when a transaction cannot be turned into a swap event"""


class ExternalCallError(MirrorBotError):
    """Raised when a collaborator (RPC node, DEX API) call fails"""


class ConfigurationError(MirrorBotError, ValueError):
    """Raised when the configuration file is missing values or malformed"""
