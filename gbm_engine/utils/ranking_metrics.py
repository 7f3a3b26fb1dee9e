import numpy as np

from gbm_engine.exceptions import ConfigurationError
from gbm_engine.utils.utils import inherit_docstrings


def score_ranks(scores: np.ndarray) -> np.ndarray:
    """
    Ranks the items of one group by decreasing score.

    Equal scores keep their order of appearance in the group.

    :param scores: Scores of shape (n_items,).
    :return: 1-based ranks of shape (n_items,).
    """
    order = np.argsort(-scores, kind="stable")
    ranks = np.empty(len(scores), dtype=int)
    ranks[order] = np.arange(1, len(scores) + 1)
    return ranks


class RankingMetric:
    """Information retrieval measure of the quality of a ranking within one group."""

    name = None
    needs_binary = False

    def __init__(self, max_rank: int = 0):
        """
        Initialize a ranking metric.

        :param max_rank: Rank cut-off. 0 means all ranks are taken into account.
        """
        if max_rank < 0:
            raise ConfigurationError(f"max_rank must be non-negative, got {max_rank}")
        self.max_rank = int(max_rank)

    def measure(self, y: np.ndarray, ranks: np.ndarray) -> float:
        """
        Calculates the metric for one group.

        :param y: Target values of the items in the group.
        :param ranks: 1-based ranks of the items.
        :return: The metric value, where larger is better.
        """
        pass

    def swap_cost(
        self, y: np.ndarray, ranks: np.ndarray, i: np.ndarray, j: np.ndarray
    ) -> np.ndarray:
        """
        Calculates the absolute change of the metric when the ranks of items
        i and j are exchanged, for every pair (i[k], j[k]).

        :param y: Target values of the items in the group.
        :param ranks: 1-based ranks of the items.
        :param i: First items of the pairs.
        :param j: Second items of the pairs.
        :return: Absolute metric changes of shape (n_pairs,).
        """
        current = self.measure(y=y, ranks=ranks)
        cost = np.zeros(len(i))
        for k in range(len(i)):
            swapped = ranks.copy()
            swapped[i[k]], swapped[j[k]] = ranks[j[k]], ranks[i[k]]
            cost[k] = abs(self.measure(y=y, ranks=swapped) - current)
        return cost

    def to_dict(self) -> dict:
        return {"metric": self.name, "max_rank": self.max_rank}


@inherit_docstrings
class ConcordanceMetric(RankingMetric):
    """Fraction of concordant pairs; the area under the ROC curve for 0/1 labels."""

    name = "conc"

    def measure(self, y: np.ndarray, ranks: np.ndarray) -> float:
        higher = y[:, None] > y[None, :]
        n_pairs = higher.sum()
        if n_pairs == 0:
            return 0.0
        concordant = higher & (ranks[:, None] < ranks[None, :])
        return concordant.sum() / n_pairs


@inherit_docstrings
class ReciprocalRankMetric(RankingMetric):
    """Reciprocal rank of the highest ranked positive item."""

    name = "mrr"
    needs_binary = True

    def measure(self, y: np.ndarray, ranks: np.ndarray) -> float:
        positive_ranks = ranks[y > 0]
        if len(positive_ranks) == 0:
            return 0.0
        top = positive_ranks.min()
        if self.max_rank > 0 and top > self.max_rank:
            return 0.0
        return 1.0 / top


@inherit_docstrings
class AveragePrecisionMetric(RankingMetric):
    """Average precision over the positive items."""

    name = "map"
    needs_binary = True

    def measure(self, y: np.ndarray, ranks: np.ndarray) -> float:
        positive_ranks = np.sort(ranks[y > 0])
        if len(positive_ranks) == 0:
            return 0.0
        precision = np.arange(1, len(positive_ranks) + 1) / positive_ranks
        return precision.mean()


@inherit_docstrings
class NDCGMetric(RankingMetric):
    """
    Normalized discounted cumulative gain.

    The gain of an item is its target value, discounted by log2(rank + 1) and
    normalized by the largest achievable value for the group.
    """

    name = "ndcg"

    def _discount(self, ranks: np.ndarray) -> np.ndarray:
        discount = 1 / np.log2(ranks + 1.0)
        if self.max_rank > 0:
            discount[ranks > self.max_rank] = 0.0
        return discount

    def _max_dcg(self, y: np.ndarray) -> float:
        ideal = np.sort(y)[::-1]
        return np.sum(ideal * self._discount(np.arange(1, len(y) + 1)))

    def measure(self, y: np.ndarray, ranks: np.ndarray) -> float:
        max_dcg = self._max_dcg(y)
        if max_dcg <= 0:
            return 0.0
        return np.sum(y * self._discount(ranks)) / max_dcg

    def swap_cost(
        self, y: np.ndarray, ranks: np.ndarray, i: np.ndarray, j: np.ndarray
    ) -> np.ndarray:
        max_dcg = self._max_dcg(y)
        if max_dcg <= 0:
            return np.zeros(len(i))
        discount = self._discount(ranks)
        return np.abs((y[i] - y[j]) * (discount[i] - discount[j])) / max_dcg


def initiate_metric(metric: str = "ndcg", max_rank: int = 0) -> RankingMetric:
    """
    Returns a ranking metric object based on the metric name.

    :param metric: One of "conc", "mrr", "map" or "ndcg".
    :param max_rank: Rank cut-off for "ndcg" and "mrr". 0 means no cut-off.
    :return: A ranking metric object.
    :raises ConfigurationError: If the metric name is not recognized.
    """
    if metric == "conc":
        return ConcordanceMetric(max_rank=max_rank)
    if metric == "mrr":
        return ReciprocalRankMetric(max_rank=max_rank)
    if metric == "map":
        return AveragePrecisionMetric(max_rank=max_rank)
    if metric == "ndcg":
        return NDCGMetric(max_rank=max_rank)
    raise ConfigurationError(f"Unknown ranking metric: {metric}")
