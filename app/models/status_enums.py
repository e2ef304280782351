"""
Centralized status enums for different entities
"""

from enum import Enum


class ListingStatus(str, Enum):
    """Lifecycle status of a normalized listing"""
    ACTIVE = "ACTIVE"                    # Visible, confidently extracted
    INACTIVE = "INACTIVE"                # Hidden by an operator
    EXPIRED = "EXPIRED"                  # Too old to be relevant
    RENTED = "RENTED"                    # Taken off the market
    PENDING_REVIEW = "PENDING_REVIEW"    # Low confidence or incomplete, waiting for review

    @property
    def is_terminal(self) -> bool:
        return self in (ListingStatus.INACTIVE, ListingStatus.EXPIRED, ListingStatus.RENTED)

    def can_transition_to(self, target: "ListingStatus") -> bool:
        """Check whether moving to target status is allowed in normal operation"""
        return target == self or target in LISTING_STATUS_TRANSITIONS[self]


LISTING_STATUS_TRANSITIONS = {
    ListingStatus.PENDING_REVIEW: {
        ListingStatus.ACTIVE,
        ListingStatus.INACTIVE,
        ListingStatus.EXPIRED,
        ListingStatus.RENTED,
    },
    ListingStatus.ACTIVE: {
        ListingStatus.PENDING_REVIEW,
        ListingStatus.INACTIVE,
        ListingStatus.EXPIRED,
        ListingStatus.RENTED,
    },
    ListingStatus.INACTIVE: set(),
    ListingStatus.EXPIRED: set(),
    ListingStatus.RENTED: set(),
}


class JobStatus(str, Enum):
    """Status for parse job processing"""
    PENDING = "pending"          # Waiting to be claimed (possibly after a backoff delay)
    PROCESSING = "processing"    # Claimed by a worker
    COMPLETED = "completed"      # Finished successfully
    FAILED = "failed"            # Terminal failure, no more retries


class JobType(str, Enum):
    """Kinds of work the ingestion queue handles"""
    PROCESS_POST = "process_post"
    GEOCODE_ADDRESS = "geocode_address"
