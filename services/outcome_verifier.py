"""Post-registration connectivity verification."""

from __future__ import annotations

import time
from typing import Callable

from client.interfaces import ClientCommands
from core.logging import SOURCE_NETBIRD, log_info, log_success, log_warning
from core.models import ConnectionState, VerificationOutcome


CONNECTED_INDICATORS = (
    "Status: Connected",
    "Management: Connected",
    "Signal: Connected",
    "Daemon status: Up",
)
PEER_INDICATORS = (
    "NetBird IP:",
    "Peers count:",
    "Interface:",
)
INDICATOR_THRESHOLD = 2


def evaluate_connection(output: str) -> ConnectionState:
    """Judge connectivity from status text.

    Connected requires at least INDICATOR_THRESHOLD connected indicators and
    at least one peer or interface indicator.
    """

    indicators = tuple(marker for marker in CONNECTED_INDICATORS if marker in output)
    peers = tuple(marker for marker in PEER_INDICATORS if marker in output)
    connected = len(indicators) >= INDICATOR_THRESHOLD and bool(peers)
    return ConnectionState(connected=connected, indicators=indicators, peer_markers=peers)


class OutcomeVerifier:
    """Poll detailed status until the client is confirmed connected."""

    def __init__(
        self,
        cli: ClientCommands,
        *,
        interval_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cli = cli
        self._interval_s = interval_s
        self._clock = clock
        self._sleep = sleep

    def check_once(self) -> ConnectionState:
        result = self._cli.status_detail()
        if not result.ok:
            return ConnectionState(connected=False)
        return evaluate_connection(result.stdout)

    def verify(self, max_wait_s: float) -> VerificationOutcome:
        deadline = self._clock() + max(max_wait_s, 0.0)
        polls = 0
        state = ConnectionState(connected=False)
        last_output = ""
        log_info(f"Verifying registration for up to {max_wait_s:.0f}s", SOURCE_NETBIRD)
        while True:
            polls += 1
            result = self._cli.status_detail()
            last_output = result.output
            if result.ok:
                state = evaluate_connection(result.stdout)
                log_info(
                    f"Verification poll {polls}: {len(state.indicators)} indicators, "
                    f"{len(state.peer_markers)} peer markers",
                    SOURCE_NETBIRD,
                )
                if state.connected:
                    log_success("Registration verified: client connected", SOURCE_NETBIRD)
                    return VerificationOutcome(
                        confirmed=True, state=state, polls=polls, last_output=last_output
                    )
            else:
                log_info(
                    f"Verification poll {polls}: status exited {result.returncode}", SOURCE_NETBIRD
                )
            remaining = deadline - self._clock()
            if remaining <= 0:
                log_warning(
                    f"Could not confirm connectivity within {max_wait_s:.0f}s", SOURCE_NETBIRD
                )
                return VerificationOutcome(
                    confirmed=False, state=state, polls=polls, last_output=last_output
                )
            self._sleep(min(self._interval_s, remaining))
