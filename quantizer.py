"""
Octree vector quantizer.

Compresses a stream of integer vectors (pixel colors) into a bounded set of
weighted summary points. Exact vectors are kept losslessly until reduction
is requested; reduction then folds the deepest, most recently created
branches into their parents first.
"""

from dataclasses import dataclass, field


# =============================================================================
# Constants
# =============================================================================

BRANCHES = 8  # One bit per dimension, up to 3 dimensions
MAX_DIMENSIONS = 3
EMPTY = -1  # Arena sentinel for an absent child / bottom of a stack


# =============================================================================
# Tree Nodes
# =============================================================================

@dataclass
class QuantNode:
    """A node of the octree, stored in the quantizer's arena."""
    level: int
    is_leaf: bool
    mean: list  # Running weighted mean, one float per dimension
    count: int = 0  # Number of vectors folded into this node
    children: list = field(default_factory=lambda: [EMPTY] * BRANCHES)
    next_reducible: int = EMPTY  # Next internal node on the same level's stack


class Quantizer:
    """
    Octree quantizer over D-dimensional integer vectors.

    Nodes are held in a flat arena and referenced by index. Internal nodes
    on each level form a LIFO stack threaded through `next_reducible`, so
    the node popped by `reduce()` is always the newest one on the deepest
    level that still has internal nodes.
    """

    def __init__(self, max_bits: int = 8, dimensions: int = 3):
        if max_bits < 0:
            raise ValueError(f"max_bits must be non-negative, got {max_bits}")
        if not 1 <= dimensions <= MAX_DIMENSIONS:
            raise ValueError(
                f"dimensions must be between 1 and {MAX_DIMENSIONS}, got {dimensions}"
            )

        self.max_bits = max_bits
        self.dimensions = dimensions
        # Level 0 looks at the most significant bit
        self.level_masks = [1 << (max_bits - 1 - level) for level in range(max_bits)]

        self._nodes: list[QuantNode] = []
        self._free: list[int] = []
        self._reducible = [EMPTY] * max_bits  # Stack top per level

        self._leaf_count = 0
        self._num_vectors = 0

        self._last_vector = None
        self._last_leaf = EMPTY

        self.root = self._new_node(0)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def leaf_count(self) -> int:
        """Number of non-empty leaves reachable from the root."""
        return self._leaf_count

    @property
    def num_vectors(self) -> int:
        """Total number of vectors ever inserted."""
        return self._num_vectors

    def node(self, index: int) -> QuantNode:
        return self._nodes[index]

    # -------------------------------------------------------------------------
    # Arena
    # -------------------------------------------------------------------------

    def _new_node(self, level: int) -> int:
        is_leaf = level >= self.max_bits
        node = QuantNode(level=level, is_leaf=is_leaf, mean=[0.0] * self.dimensions)

        if self._free:
            index = self._free.pop()
            self._nodes[index] = node
        else:
            index = len(self._nodes)
            self._nodes.append(node)

        if not is_leaf:
            node.next_reducible = self._reducible[level]
            self._reducible[level] = index

        return index

    def _release(self, index: int) -> None:
        self._nodes[index] = None
        self._free.append(index)

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def _validate(self, vector) -> tuple:
        if len(vector) != self.dimensions:
            raise ValueError(
                f"Expected a vector of {self.dimensions} components, got {len(vector)}"
            )
        limit = 1 << self.max_bits
        values = []
        for v in vector:
            iv = int(v)
            if iv != v:
                raise ValueError(f"Component {v} is not an integer")
            if not 0 <= iv < limit:
                raise ValueError(
                    f"Component {iv} out of range for {self.max_bits}-bit quantizer"
                )
            values.append(iv)
        return tuple(values)

    def _branch(self, vector: tuple, level: int) -> int:
        mask = self.level_masks[level]
        index = 0
        for v in vector:
            index = (index << 1) | (1 if v & mask else 0)
        return index

    def _accumulate(self, index: int, vector: tuple) -> None:
        leaf = self._nodes[index]
        if leaf.count == 0:
            self._leaf_count += 1
        k = leaf.count + 1
        leaf.mean = [(m * (k - 1) + v) / k for m, v in zip(leaf.mean, vector)]
        leaf.count = k

    def insert_vector(self, vector) -> None:
        """Route one vector to its leaf and fold it into the leaf's mean."""
        vector = self._validate(vector)
        self._num_vectors += 1

        if self._last_leaf != EMPTY and vector == self._last_vector:
            self._accumulate(self._last_leaf, vector)
            return

        index = self.root
        node = self._nodes[index]
        while not node.is_leaf:
            branch = self._branch(vector, node.level)
            child = node.children[branch]
            if child == EMPTY:
                child = self._new_node(node.level + 1)
                node.children[branch] = child
            index = child
            node = self._nodes[index]

        self._accumulate(index, vector)
        self._last_vector = vector
        self._last_leaf = index

    def insert_vectors(self, vectors) -> None:
        """Insert every row of an (n, D) array or sequence of vectors."""
        if hasattr(vectors, 'tolist'):
            vectors = vectors.tolist()
        for vector in vectors:
            self.insert_vector(vector)

    # -------------------------------------------------------------------------
    # Reduction
    # -------------------------------------------------------------------------

    def reduce(self) -> bool:
        """
        Merge the newest internal node on the deepest non-empty level.

        Returns:
            False if no internal node is left to reduce.
        """
        for level in range(self.max_bits - 1, -1, -1):
            if self._reducible[level] != EMPTY:
                break
        else:
            return False

        index = self._reducible[level]
        node = self._nodes[index]
        self._reducible[level] = node.next_reducible
        node.next_reducible = EMPTY

        merged = 0
        for branch, child_index in enumerate(node.children):
            if child_index == EMPTY:
                continue
            child = self._nodes[child_index]
            if child.count > 0:
                total = node.count + child.count
                node.mean = [
                    (m * node.count + c * child.count) / total
                    for m, c in zip(node.mean, child.mean)
                ]
                node.count = total
                merged += 1
            node.children[branch] = EMPTY
            self._release(child_index)

        node.is_leaf = True
        self._leaf_count -= merged
        if node.count > 0:
            self._leaf_count += 1

        # The cached leaf may have been released
        self._last_vector = None
        self._last_leaf = EMPTY
        return True

    def leaves(self) -> list[tuple[tuple, int]]:
        """Depth-first (mean, count) pairs of all non-empty leaves."""
        result = []
        stack = [self.root]
        while stack:
            node = self._nodes[stack.pop()]
            if node.is_leaf:
                if node.count > 0:
                    result.append((tuple(node.mean), node.count))
                continue
            # Reversed so children pop in index order
            for child in reversed(node.children):
                if child != EMPTY:
                    stack.append(child)
        return result

    def reduce_to_size(self, target: int) -> list[tuple[tuple, int]]:
        """
        Reduce until at most `target` leaves remain.

        Args:
            target: Maximum number of leaves to keep

        Returns:
            List of (mean vector, count) pairs in depth-first order.

        Raises:
            ValueError: If target is not positive and the tree holds data
        """
        if target <= 0 and self._leaf_count > 0:
            raise ValueError(f"target must be positive, got {target}")

        while self._leaf_count > target:
            if not self.reduce():
                break

        return self.leaves()
