"""Error taxonomy for chat and consensus runs.

Cancellation is not represented here: a cancelled run always ends through
``on_complete("abort")``.
"""


class AgentChatError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(AgentChatError):
    """Invalid provider/consensus setup. Raised before any network call."""


class UnsupportedInputError(AgentChatError):
    """The selected model rejected part of the input (e.g. images)."""


class ConsensusError(AgentChatError):
    """The synthesis node or the whole consensus graph failed."""
