"""
Throttling rules for the polling fallback channel.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ClientState:
    """What a polling client reports about itself."""

    visible: bool = True
    heavy_media_active: bool = False


@dataclass(frozen=True)
class PollingPolicy:
    """
    Decides whether a poll for project status should be served.

    Polls are skipped while the client is hidden and while heavy media (a
    playing video) is active, so refreshes do not interrupt playback. This is
    a UX throttle; correctness relies on the event stream and the outstanding
    snapshot, not on polling.
    """

    skip_when_hidden: bool = True
    skip_during_heavy_media: bool = True

    def skip_reason(self, state: ClientState) -> str | None:
        if self.skip_when_hidden and not state.visible:
            return "client_hidden"
        if self.skip_during_heavy_media and state.heavy_media_active:
            return "heavy_media_active"
        return None

    def should_poll(self, state: ClientState) -> bool:
        return self.skip_reason(state) is None
