from .providers import ImageProvider, PollingProvider, PollResult, PollStatus
from .wavespeed import SeaDreamProvider
from .gemini import GeminiProvider


def create_providers(api_keys, session=None, poll_interval=None, poll_timeout=None):
    """Build every known provider keyed by its settings name."""

    seadream = SeaDreamProvider(api_keys.get(SeaDreamProvider.name, ""), session=session)
    if poll_interval is not None:
        seadream.poll_interval = poll_interval
    if poll_timeout is not None:
        seadream.poll_timeout = poll_timeout
    gemini = GeminiProvider(api_keys.get(GeminiProvider.name, ""), session=session)
    return {seadream.name: seadream, gemini.name: gemini}


__all__ = [
    "GeminiProvider",
    "ImageProvider",
    "PollResult",
    "PollStatus",
    "PollingProvider",
    "SeaDreamProvider",
    "create_providers",
]
