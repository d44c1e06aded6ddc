from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

JUPITER = "Jupiter"
METEORA = "Meteora"


@dataclass(frozen=True)
class PoolEvent:
    pool_address: str
    token_a: str
    token_b: str
    created_at: float
    signature: Optional[str] = None
    marker: Optional[str] = None


@dataclass(frozen=True)
class FundingResult:
    tx_receipt: str
    amount_a: float
    amount_b: float
    pool_address: str = ""
    paper: bool = False


@dataclass(frozen=True)
class ListingResult:
    listed: bool
    platforms: FrozenSet[str] = frozenset()
    seconds_to_list: Optional[int] = None
    pool_address: str = ""
    attempts: int = 0


class PipelineState(str, enum.Enum):
    DETECTED = "detected"
    FUNDING = "funding"
    FUNDING_FAILED = "funding_failed"
    FUNDED = "funded"
    POLLING = "polling"
    LISTED_ON_JUPITER = "listed_on_jupiter"
    LISTED_ON_AGGREGATOR = "listed_on_aggregator"
    LISTED_BOTH = "listed_both"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self not in _TRANSITIONS


_TRANSITIONS = {
    PipelineState.DETECTED: {PipelineState.FUNDING},
    PipelineState.FUNDING: {PipelineState.FUNDED, PipelineState.FUNDING_FAILED},
    PipelineState.FUNDED: {PipelineState.POLLING},
    PipelineState.POLLING: {
        PipelineState.LISTED_ON_JUPITER,
        PipelineState.LISTED_ON_AGGREGATOR,
        PipelineState.LISTED_BOTH,
        PipelineState.TIMED_OUT,
    },
}


class PipelineStateError(RuntimeError):
    pass


def state_for_listing(result: ListingResult) -> PipelineState:
    if not result.listed:
        return PipelineState.TIMED_OUT
    if JUPITER in result.platforms and METEORA in result.platforms:
        return PipelineState.LISTED_BOTH
    if JUPITER in result.platforms:
        return PipelineState.LISTED_ON_JUPITER
    return PipelineState.LISTED_ON_AGGREGATOR


@dataclass
class PipelineRun:
    """
    Run state of one pool pipeline.
    States only move forward; ABORTED is reachable from any non-terminal state.
    """

    event: PoolEvent
    state: PipelineState = PipelineState.DETECTED
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.DETECTED])
    funding: Optional[FundingResult] = None
    listing: Optional[ListingResult] = None
    error: Optional[str] = None
    poll_task: Optional[asyncio.Task] = None
    started_at: float = field(default_factory=time.time)

    @property
    def pool_address(self) -> str:
        return self.event.pool_address

    def advance(self, new_state: PipelineState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state == PipelineState.ABORTED and not self.state.terminal:
            allowed = {PipelineState.ABORTED}
        if new_state not in allowed:
            raise PipelineStateError(f"illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def abort(self, reason: str) -> None:
        self.error = reason
        if not self.state.terminal:
            self.advance(PipelineState.ABORTED)
