"""
Referral state machine for managing referral status transitions
"""

from typing import Dict, Set
from app.models.referral import ReferralStatus

class ReferralStateMachine:
    """
    Forward-only referral lifecycle

    pending -> signed_up -> converted. Nothing moves backwards and a
    converted referral is terminal.
    """

    def __init__(self):
        self.transitions: Dict[ReferralStatus, Set[ReferralStatus]] = {
            ReferralStatus.PENDING: {
                ReferralStatus.SIGNED_UP
            },
            ReferralStatus.SIGNED_UP: {
                ReferralStatus.CONVERTED
            },
            ReferralStatus.CONVERTED: set()  # Terminal state
        }

    def can_transition(
        self,
        current_status: ReferralStatus,
        new_status: ReferralStatus
    ) -> bool:
        """
        Check if transition is valid

        Args:
            current_status: Current referral status
            new_status: Desired new status

        Returns:
            True if transition is allowed
        """
        return new_status in self.transitions.get(current_status, set())

    def is_terminal_state(self, status: ReferralStatus) -> bool:
        """Check if status is a terminal state"""
        return len(self.transitions.get(status, set())) == 0

    def is_commission_eligible(self, status: ReferralStatus) -> bool:
        """Only signed-up referrals can convert and earn commission"""
        return ReferralStatus.CONVERTED in self.transitions.get(status, set())

referral_state_machine = ReferralStateMachine()
