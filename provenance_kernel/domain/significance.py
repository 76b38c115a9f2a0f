"""
Significance scoring for recurring spike patterns.

Responsibility:
    Turns an occurrence count into a score of how unlikely that many
    recurrences are under a chance (null) firing model.  The contract every
    model honours: higher score means less likely to be chance co-firing.

Null model:
    Each neuron fires independently with baseline probability ``r`` per
    spike event.  A specific k-neuron pattern therefore co-fires by chance
    with probability ``r**k``, and across ``N`` spike events in the window we
    expect ``lam = N * r**k`` chance occurrences.  Everything is computed in
    log space because ``r**k`` underflows for wide patterns.

Models:
    PoissonSignificance -- ``-log10 P[X >= count]`` with ``X ~ Poisson(lam)``.
    RatioSignificance   -- ``count / lam``.
"""

import math
from abc import ABC, abstractmethod

from provenance_kernel.domain.causal_graph import PatternAggregate

_LN10 = math.log(10.0)
_MAX_TAIL_TERMS = 100_000
# exp(-40) relative to the leading term no longer moves the sum
_TAIL_CUTOFF = 40.0
_MAX_LOG_RATIO = 700.0


def log_expected_chance_occurrences(
    neuron_count: int,
    total_events: int,
    baseline_firing_rate: float,
) -> float:
    """Natural log of ``total_events * baseline_firing_rate ** neuron_count``."""
    return math.log(max(total_events, 1)) + neuron_count * math.log(baseline_firing_rate)


def poisson_log_sf(count: int, log_lam: float) -> float:
    """Natural log of ``P[X >= count]`` for ``X ~ Poisson(exp(log_lam))``."""
    if count <= 0:
        return 0.0

    lam = math.exp(log_lam)

    def log_term(i: int) -> float:
        return -lam + i * log_lam - math.lgamma(i + 1)

    if count <= lam:
        lower = sum(math.exp(log_term(i)) for i in range(count))
        return math.log(max(1.0 - lower, 1e-300))

    # Upper tail: terms decrease monotonically once i > lam
    first = log_term(count)
    acc = 0.0
    i = count
    while i - count < _MAX_TAIL_TERMS:
        delta = log_term(i) - first
        if delta < -_TAIL_CUTOFF:
            break
        acc += math.exp(delta)
        i += 1
    return first + math.log(acc)


class SignificanceModel(ABC):
    """Scores a pattern aggregate against the chance baseline."""

    name: str = "abstract"

    def __init__(self, baseline_firing_rate: float = 0.05):
        if not 0.0 < baseline_firing_rate < 1.0:
            raise ValueError(
                f"baseline_firing_rate must be in (0, 1), got {baseline_firing_rate}"
            )
        self.baseline_firing_rate = baseline_firing_rate

    def log_expected(self, aggregate: PatternAggregate, total_events: int) -> float:
        return log_expected_chance_occurrences(
            len(set(aggregate.neuron_indices)),
            total_events,
            self.baseline_firing_rate,
        )

    @abstractmethod
    def score(self, aggregate: PatternAggregate, total_events: int) -> float:
        """
        Score ``aggregate`` given ``total_events`` spike events in the window.

        ``total_events`` counts every spike event in the window, including
        fingerprints later dropped by the occurrence filter.
        """
        ...


class PoissonSignificance(SignificanceModel):
    """``-log10`` of the Poisson upper-tail probability of the observed count."""

    name = "poisson"

    def score(self, aggregate: PatternAggregate, total_events: int) -> float:
        log_sf = poisson_log_sf(aggregate.count, self.log_expected(aggregate, total_events))
        return max(0.0, -log_sf / _LN10)


class RatioSignificance(SignificanceModel):
    """Observed occurrences over expected chance occurrences."""

    name = "ratio"

    def score(self, aggregate: PatternAggregate, total_events: int) -> float:
        if aggregate.count <= 0:
            return 0.0
        log_ratio = math.log(aggregate.count) - self.log_expected(aggregate, total_events)
        return math.exp(min(log_ratio, _MAX_LOG_RATIO))


_MODELS: dict[str, type[SignificanceModel]] = {
    PoissonSignificance.name: PoissonSignificance,
    RatioSignificance.name: RatioSignificance,
}


def build_significance_model(name: str, baseline_firing_rate: float) -> SignificanceModel:
    """Instantiate a significance model by its configured name."""
    try:
        model_cls = _MODELS[name]
    except KeyError:
        raise ValueError(
            f"Unknown significance model {name!r}. Valid: {sorted(_MODELS)}"
        ) from None
    return model_cls(baseline_firing_rate=baseline_firing_rate)
