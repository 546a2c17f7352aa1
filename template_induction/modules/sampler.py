import logging

from abc import ABC, abstractmethod
from template_induction.constants import *
from template_induction.modules.model_state import ModelSnapshot, ModelState
from typing import List, Optional

LOG = logging.getLogger(__name__)


class Sampler(ABC):
    """What every topic sampler exposes to trainers and scripts"""

    @property
    @abstractmethod
    def state(self) -> ModelState:
        raise NotImplementedError

    @abstractmethod
    def run_sampler(self, n_iterations: int) -> ModelState:
        """Samples for up to n_iterations sweeps and returns the best sample"""
        raise NotImplementedError

    @abstractmethod
    def print_distributions(self, n_top: int = 25) -> None:
        raise NotImplementedError

    @abstractmethod
    def to_file(self, path: str) -> str:
        raise NotImplementedError


class LikelihoodTracker:
    def __init__(
        self,
        stable_min_step: int = STABLE_MIN_STEP,
        stable_delta: float = STABLE_LIKELIHOOD_DELTA,
        regression_min_step: int = REGRESSION_MIN_STEP,
        regression_steps_ago: int = REGRESSION_STEPS_AGO,
        regression_fraction_ago: float = REGRESSION_FRACTION_AGO,
    ):
        """Tracks data likelihood across checks, keeps the best sample
        and decides when sampling has stopped paying off

        Parameters
        ----------
        stable_min_step
            the step after which a stable likelihood ends sampling
        stable_delta
            the likelihood change below which two consecutive checks
            count as stable
        regression_min_step
            the step after which a stale best likelihood ends sampling
        regression_steps_ago
            how many steps ago a best is considered stale
        regression_fraction_ago
            the fraction of elapsed steps after which a best is stale
        """
        self.stable_min_step = stable_min_step
        self.stable_delta = stable_delta
        self.regression_min_step = regression_min_step
        self.regression_steps_ago = regression_steps_ago
        self.regression_fraction_ago = regression_fraction_ago
        self.reset()

    def reset(self) -> None:
        self.best: Optional[ModelSnapshot] = None
        self.history: List[float] = []
        self.last_likelihood: Optional[float] = None
        self.last_delta: Optional[float] = None

    @property
    def best_likelihood(self) -> float:
        return float("-inf") if self.best is None else self.best.likelihood

    def record(self, state: ModelState, likelihood: float, step: int) -> bool:
        """Records a likelihood check; returns True if sampling should stop

        A new best likelihood snapshots the full model state.
        """
        self.history.append(likelihood)
        stop = False

        if self.last_likelihood is not None:
            delta = likelihood - self.last_likelihood
            if (
                step > self.stable_min_step
                and abs(delta) < self.stable_delta
                and self.last_delta is not None
                and abs(self.last_delta) < self.stable_delta
            ):
                LOG.info(f"Likelihood stable at step {step} ({likelihood:.2f}). Stopping early.")
                stop = True
            self.last_delta = delta
        self.last_likelihood = likelihood

        if self.best is not None and self.best.likelihood > likelihood:
            steps_ago = step - self.best.step
            if step > self.regression_min_step and (
                steps_ago > self.regression_steps_ago
                or steps_ago / step > self.regression_fraction_ago
            ):
                LOG.info(
                    f"Best likelihood {self.best.likelihood:.2f} was {steps_ago} steps ago "
                    f"at step {self.best.step}. Stopping early."
                )
                stop = True
        elif self.best is None or likelihood > self.best.likelihood:
            LOG.info(f"New best likelihood {likelihood:.2f} at step {step}")
            self.best = state.snapshot(likelihood, step)

        return stop
