from enum import Enum


class CrawlPhase(str, Enum):
    BACKFILLING = "backfilling"
    LIVE = "live"


class CrawlEvent(str, Enum):
    SUBSCRIPTION_OPENED = "subscription_opened"
    MINT_INITIALIZATION_OBSERVED = "mint_initialization_observed"
    EXPANSION_EDGE = "expansion_edge"
    DEPTH_EXCEEDED_WARNING = "depth_exceeded_warning"
    BACKFILL_PHASE_COMPLETE = "backfill_phase_complete"
    RETRY_WARNING = "retry_warning"
    FATAL_CALL_ERROR = "fatal_call_error"

    # progress
    BACKFILL_ADDRESS_STARTED = "backfill_address_started"
    BACKFILL_ADDRESS_FINISHED = "backfill_address_finished"
    BACKFILL_LIMIT_REACHED = "backfill_limit_reached"
    RATE_LIMIT_COOLDOWN = "rate_limit_cooldown"
