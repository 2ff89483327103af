"""
Weighted K-means refinement with farthest-point seeding.

Takes the weighted summary points produced by the quantizer and moves them
between a fixed number of clusters until a full pass makes no reassignment.
Cluster means are maintained incrementally, so every accepted move updates
both clusters immediately.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np


class EmptyClusterError(RuntimeError):
    """Raised when the mean of a cluster without members is requested."""


# =============================================================================
# Points and Clusters
# =============================================================================

@dataclass
class ClusterPoint:
    """A weighted vector and the index of the cluster currently holding it."""
    data: np.ndarray
    weight: float = 1.0
    cluster: Optional[int] = None


@dataclass
class Cluster:
    """Running weighted sum of the points that reference this cluster."""
    index: int
    dimensions: int
    sum: np.ndarray = None
    size: float = 0.0  # Total weight
    count: int = 0  # Number of member points

    def __post_init__(self):
        if self.sum is None:
            self.sum = np.zeros(self.dimensions, dtype=np.float64)

    def add_point(self, point: ClusterPoint) -> None:
        self.size += point.weight
        self.sum += point.data * point.weight
        self.count += 1
        point.cluster = self.index

    def remove_point(self, point: ClusterPoint) -> None:
        point.cluster = None
        self.size -= point.weight
        self.sum -= point.data * point.weight
        self.count -= 1

    @property
    def mean(self) -> np.ndarray:
        if self.count == 0 or self.size == 0:
            raise EmptyClusterError(f"Cluster {self.index} has no points")
        return self.sum / self.size

    def distance_to(self, point: ClusterPoint) -> float:
        """Squared Euclidean distance from the point to the cluster mean."""
        diff = point.data - self.mean
        return float(np.dot(diff, diff))


# =============================================================================
# Clusterer
# =============================================================================

class Clusterer:
    """
    K-means style clusterer over weighted points.

    Usage:
        clusterer = Clusterer(5)
        clusterer.set_points([((r, g, b), weight), ...])
        clusters = clusterer.perform_cluster(rng=0)
    """

    def __init__(self, num_clusters: int, dimensions: int = 3):
        if num_clusters <= 0:
            raise ValueError(f"num_clusters must be positive, got {num_clusters}")
        if dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {dimensions}")

        self.num_clusters = num_clusters
        self.dimensions = dimensions
        self.points: list[ClusterPoint] = []
        self._reset_clusters()

    def _reset_clusters(self) -> None:
        self.clusters = [
            Cluster(index=i, dimensions=self.dimensions) for i in range(self.num_clusters)
        ]
        for point in self.points:
            point.cluster = None

    def set_points(self, points) -> None:
        """
        Replace the point set.

        Args:
            points: (vector, weight) pairs, or bare vectors with weight 1
        """
        wrapped = []
        for entry in points:
            if len(entry) == 2 and np.ndim(entry[0]) == 1:
                vector, weight = entry
            else:
                vector, weight = entry, 1.0

            data = np.asarray(vector, dtype=np.float64)
            if data.shape != (self.dimensions,):
                raise ValueError(
                    f"Expected a vector of {self.dimensions} components, got shape {data.shape}"
                )
            if weight <= 0:
                raise ValueError(f"Point weight must be positive, got {weight}")
            wrapped.append(ClusterPoint(data=data, weight=float(weight)))

        self.points = wrapped
        self._reset_clusters()

    def nearest_cluster(self, point: ClusterPoint) -> Optional[int]:
        """Index of the closest non-empty cluster, or None if all are empty."""
        best = None
        best_dist = 0.0
        for cluster in self.clusters:
            if cluster.count == 0:
                continue
            dist = cluster.distance_to(point)
            if best is None or dist < best_dist:
                best = cluster.index
                best_dist = dist
        return best

    def _move(self, point: ClusterPoint, target: int) -> bool:
        if point.cluster == target:
            return False
        if point.cluster is not None:
            current = self.clusters[point.cluster]
            if current.count == 1:
                return False
            current.remove_point(point)
        self.clusters[target].add_point(point)
        return True

    def init_clusters(self, rng) -> None:
        """Seed each cluster with one point, spreading seeds by farthest-point."""
        if len(self.points) < self.num_clusters:
            raise ValueError(
                f"Need at least {self.num_clusters} points to seed, got {len(self.points)}"
            )

        first = int(rng.integers(len(self.points)))
        self.clusters[0].add_point(self.points[first])

        for cluster in self.clusters[1:]:
            farthest = None
            farthest_dist = -1.0
            for point in self.points:
                if point.cluster is not None:
                    continue
                # Distance to the nearest already-seeded cluster
                dist = min(
                    seeded.distance_to(point)
                    for seeded in self.clusters[:cluster.index]
                )
                if dist > farthest_dist:
                    farthest = point
                    farthest_dist = dist

            if farthest is None:
                raise ValueError("Ran out of unassigned points while seeding clusters")
            cluster.add_point(farthest)

    def cluster_step(self) -> int:
        """One assignment pass over all points; returns the number of moves."""
        moved = 0
        for point in self.points:
            target = self.nearest_cluster(point)
            if target is None:
                continue
            if self._move(point, target):
                moved += 1
        return moved

    def perform_cluster(self, rng=None, max_iterations: Optional[int] = None) -> list[Cluster]:
        """
        Seed and iterate until a pass makes no reassignment.

        Args:
            rng: Seed or numpy Generator used to pick the first seed point
            max_iterations: Optional cap on assignment passes (None = no cap)

        Returns:
            The clusters, each exposing `mean` and `size`.
        """
        if not self.points:
            raise ValueError("No points to cluster")

        # Start from empty clusters so repeated runs are independent
        self._reset_clusters()

        rng = np.random.default_rng(rng)
        self.init_clusters(rng)

        iterations = 0
        while self.cluster_step() > 0:
            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break

        return self.clusters
