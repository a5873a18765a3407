"""
Solvency Breaker - Threshold Evaluator.

============================================================
PURPOSE
============================================================
Classifies a proposed balance against a window's floor.

    allowed_floor = start_balance * (100 - threshold_pct) // 100

    BREACH    : proposed_balance <= allowed_floor
    SEVERE    : allowed_floor == 0
                OR proposed_balance * 100 // allowed_floor
                   < 100 - restriction_severity_pct

The floor itself counts as a breach.
All arithmetic is integer and truncating.

============================================================
"""

from .types import ThresholdEvaluation


class ThresholdEvaluator:
    """
    Stateless breach / severity classifier.
    """

    @staticmethod
    def allowed_floor(start_balance: int, threshold_pct: int) -> int:
        """Lowest balance that is still a breach."""
        return start_balance * (100 - threshold_pct) // 100

    @staticmethod
    def is_severe(
        proposed_balance: int,
        allowed_floor: int,
        restriction_severity_pct: int,
    ) -> bool:
        """
        Whether a breach is far enough below the floor to restrict.

        Large but legitimate withdrawals land just under the floor;
        only disproportionate drops count as likely malicious.
        """
        if allowed_floor == 0:
            return True
        return proposed_balance * 100 // allowed_floor < 100 - restriction_severity_pct

    def evaluate(
        self,
        start_balance: int,
        threshold_pct: int,
        proposed_balance: int,
        restriction_severity_pct: int,
    ) -> ThresholdEvaluation:
        """
        Classify a proposed balance.

        Args:
            start_balance: Current period start balance
            threshold_pct: Window threshold in percent
            proposed_balance: Balance after the pending operation
            restriction_severity_pct: Severity margin in percent

        Returns:
            ThresholdEvaluation
        """
        floor = self.allowed_floor(start_balance, threshold_pct)

        if proposed_balance > floor:
            return ThresholdEvaluation(allowed_floor=floor, breached=False, severe=False)

        return ThresholdEvaluation(
            allowed_floor=floor,
            breached=True,
            severe=self.is_severe(proposed_balance, floor, restriction_severity_pct),
        )
