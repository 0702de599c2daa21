"""Multiclass linear classifier (maximum entropy) trained with L-BFGS.

Minimizes mean softmax cross-entropy plus ``l2 / 2 * ||W||^2`` over the
concatenated feature matrix. The objective is strictly convex and the
solver starts from zero weights in float64, so a given training set and
config always yield the same weights.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Union

import numpy as np
import structlog
import torch
import torch.nn.functional as F

from .config import TrainingConfig
from .errors import TrainingCancelledError, TrainingDataEmptyError

logger = structlog.get_logger()

FeatureSource = Union[torch.Tensor, Callable[[], torch.Tensor]]


@dataclass(frozen=True)
class ClassifierWeights:
    """Per-class weight vectors and biases over the feature dimension."""

    weights: torch.Tensor  # (dim, num_classes)
    bias: torch.Tensor  # (num_classes,)
    history: Tuple[float, ...] = field(default=())

    @property
    def num_classes(self) -> int:
        return int(self.bias.shape[0])

    @property
    def dim(self) -> int:
        return int(self.weights.shape[0])

    def scores(self, features: torch.Tensor) -> torch.Tensor:
        """Linear per-class scores for a sparse or dense (n, dim) matrix."""
        if features.is_sparse:
            return torch.sparse.mm(features, self.weights) + self.bias
        return features @ self.weights + self.bias

    def probabilities(self, features: torch.Tensor) -> torch.Tensor:
        return torch.softmax(self.scores(features), dim=-1)


def objective(
    features: torch.Tensor,
    labels: torch.Tensor,
    weights: torch.Tensor,
    bias: torch.Tensor,
    l2: float,
) -> torch.Tensor:
    """Mean cross-entropy plus L2 penalty on the weights (bias unpenalized)."""
    if features.is_sparse:
        logits = torch.sparse.mm(features, weights) + bias
    else:
        logits = features @ weights + bias
    return F.cross_entropy(logits, labels) + 0.5 * l2 * (weights * weights).sum()


class MaxEntTrainer:
    """
    Fits a multinomial logistic regression in passes.

    Each pass runs up to ``lbfgs_max_iter`` L-BFGS iterations with a strong
    Wolfe line search. Between passes the trainer checks the cancellation
    flag and stops once the relative change in objective falls below
    ``tolerance`` or ``max_passes`` is reached.
    """

    def __init__(self, config: Optional[TrainingConfig] = None):
        self.config = config or TrainingConfig()

    def fit(
        self,
        features: FeatureSource,
        labels: Union[np.ndarray, torch.Tensor],
        num_classes: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ClassifierWeights:
        """
        Train weights on an (n, dim) feature matrix and encoded labels.

        Args:
            features: Sparse float64 tensor, or a callable returning one per pass
            labels: Encoded label keys, shape (n,)
            num_classes: Size of the label encoding (defaults to max key + 1)
            cancel_event: Optional flag checked between passes

        Returns:
            ClassifierWeights with the objective value after every pass
        """
        config = self.config
        y = torch.as_tensor(np.asarray(labels), dtype=torch.long)

        if y.numel() == 0:
            raise TrainingDataEmptyError("No training records supplied")
        distinct = int(torch.unique(y).numel())
        if distinct < 2:
            raise TrainingDataEmptyError(
                f"Multiclass training needs at least 2 distinct labels, got {distinct}"
            )

        provider = features if callable(features) else (lambda: features)
        first = provider()
        if first.shape[0] != y.shape[0]:
            raise ValueError(
                f"Feature rows ({first.shape[0]}) and labels ({y.shape[0]}) differ"
            )

        k = num_classes if num_classes is not None else int(y.max()) + 1

        previous_threads = torch.get_num_threads()
        if config.num_threads:
            torch.set_num_threads(config.num_threads)
        try:
            return self._optimize(provider, first, y, k, cancel_event)
        finally:
            torch.set_num_threads(previous_threads)

    def _optimize(
        self,
        provider: Callable[[], torch.Tensor],
        first: torch.Tensor,
        y: torch.Tensor,
        k: int,
        cancel_event: Optional[threading.Event],
    ) -> ClassifierWeights:
        config = self.config
        dim = int(first.shape[1])
        torch.manual_seed(config.seed)

        weights = torch.zeros(dim, k, dtype=torch.float64, requires_grad=True)
        bias = torch.zeros(k, dtype=torch.float64, requires_grad=True)
        optimizer = torch.optim.LBFGS(
            [weights, bias],
            lr=1.0,
            max_iter=config.lbfgs_max_iter,
            tolerance_grad=1e-10,
            tolerance_change=1e-12,
            history_size=10,
            line_search_fn="strong_wolfe",
        )

        logger.info(
            "training_started",
            records=int(y.shape[0]),
            classes=k,
            dim=dim,
            l2=config.l2,
            max_passes=config.max_passes,
        )

        history = []
        previous = None
        x = first
        for pass_idx in range(config.max_passes):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("training_cancelled", completed_passes=pass_idx)
                raise TrainingCancelledError(pass_idx)

            if pass_idx > 0:
                x = provider()

            def closure():
                optimizer.zero_grad()
                loss = objective(x, y, weights, bias, config.l2)
                loss.backward()
                return loss

            optimizer.step(closure)

            with torch.no_grad():
                value = float(objective(x, y, weights, bias, config.l2))
            history.append(value)
            logger.debug("training_pass", pass_index=pass_idx, objective=value)

            if previous is not None and abs(previous - value) <= config.tolerance * max(1.0, abs(previous)):
                break
            previous = value

        logger.info("training_finished", passes=len(history), objective=history[-1])

        return ClassifierWeights(
            weights=weights.detach().clone(),
            bias=bias.detach().clone(),
            history=tuple(history),
        )
