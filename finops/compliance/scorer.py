"""Risk aggregation and decision policy for multi-provider screening.

The decision is DETERMINISTIC: the same provider results always produce the
same outcome.
  - aggregate = mean of the non-null provider risk scores (0-10);
    providers that errored keep their entry but do not count
  - approved = aggregate <= 7 and no provider said approved=false
  - requires_review = aggregate > 5, or no aggregate at all
  - decision = pending_review if requires_review, otherwise compliant
    when approved and non_compliant when not
"""

from typing import List, Optional, Tuple

from finops.models import ProviderScreening

APPROVAL_CEILING = 7
REVIEW_THRESHOLD = 5


def aggregate_risk(results: List[ProviderScreening]) -> Optional[float]:
    """Mean of the non-null risk scores, or None if there are none."""
    scores = [r.risk_score for r in results if r.risk_score is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def decide(
    results: List[ProviderScreening],
) -> Tuple[Optional[float], bool, bool, str]:
    """Combine per-provider results into a single screening decision.

    Returns:
        Tuple of (aggregate_risk_score, approved, requires_review, decision).
    """
    aggregate = aggregate_risk(results)

    if aggregate is None:
        # Nothing scored: either no providers or every provider failed
        return None, False, True, "pending_review"

    approved = aggregate <= APPROVAL_CEILING and all(r.approved for r in results)
    requires_review = aggregate > REVIEW_THRESHOLD

    if requires_review:
        decision = "pending_review"
    elif approved:
        decision = "compliant"
    else:
        decision = "non_compliant"

    return aggregate, approved, requires_review, decision
