"""AVL tree nodes that keep value counts and a sorted doubly linked list."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def _format_value(value: float) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


class HistogramItem:
    """A node of the histogram tree.

    ``count`` is the number of samples in the subtree rooted here and
    ``duplications`` the number of samples equal to ``value``. Besides the
    tree links every node is threaded into a sorted list through
    ``smaller`` and ``larger``.
    """

    __slots__ = (
        "value",
        "left",
        "right",
        "parent",
        "smaller",
        "larger",
        "height",
        "count",
        "duplications",
    )

    def __init__(self, value: float) -> None:
        self.value = value
        self.left: HistogramItem | None = None
        self.right: HistogramItem | None = None
        self.parent: HistogramItem | None = None
        self.smaller: HistogramItem | None = None
        self.larger: HistogramItem | None = None
        self.height = 1
        self.count = 1
        self.duplications = 1

    def __repr__(self) -> str:
        return (
            f"HistogramItem(value={self.value!r}, count={self.count}, "
            f"duplications={self.duplications}, height={self.height})"
        )

    def root(self) -> HistogramItem:
        """Return the root of the tree this node belongs to."""
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def find(self, value: float) -> HistogramItem | None:
        """Return the node holding exactly ``value`` in this subtree."""
        node: HistogramItem | None = self
        while node is not None:
            if node.value == value:
                return node
            if value < node.value:
                node = node.left
            elif value > node.value:
                node = node.right
            else:
                return None
        return None

    def smallest_in_right(self) -> HistogramItem | None:
        """Return the leftmost node of the right subtree."""
        node = self.right
        if node is None:
            return None
        while node.left is not None:
            node = node.left
        return node

    def largest_in_left(self) -> HistogramItem | None:
        """Return the rightmost node of the left subtree."""
        node = self.left
        if node is None:
            return None
        while node.right is not None:
            node = node.right
        return node

    def find_no_larger_than(self, value: float) -> HistogramItem | None:
        """Return the node with the greatest value not above ``value``."""
        node = self
        if node.value <= value:
            while node.right is not None and node.value <= value:
                node = node.right
            if node.value <= value:
                return node
            candidate = node.parent
            if node.left is not None:
                found = node.left.find_no_larger_than(value)
                candidate = found if found is not None else node.parent
            return candidate

        while node.left is not None and node.value > value:
            node = node.left
        if node.value > value:
            return None
        candidate = node
        if node.right is not None:
            found = node.right.find_no_larger_than(value)
            candidate = found if found is not None else node
        return candidate

    def cumulative_count(self) -> int:
        """Return how many samples in the whole tree are at most this value."""
        total = self.duplications
        if self.left is not None:
            total += self.left.count
        previous, current = self, self.parent
        while current is not None:
            if current.left is not previous:
                total += current.duplications
                if current.left is not None:
                    total += current.left.count
            previous, current = current, current.parent
        return total

    def insert(
        self, value: float, count: int = 1
    ) -> tuple[HistogramItem, HistogramItem | None]:
        """Add ``count`` samples of ``value`` below this node.

        Returns the node holding the value and the new tree root, or
        ``None`` in place of the root when it cannot have changed.
        """
        node = self
        while True:
            if value == node.value:
                node.duplications += count
                ancestor: HistogramItem | None = node
                while ancestor is not None:
                    ancestor.count += count
                    ancestor = ancestor.parent
                return node, None

            if (node.left is None and value < node.value) or (
                node.right is None and value > node.value
            ):
                return node._attach_leaf(value, count)

            if value < node.value:
                child = node.left
                if child is node or child.value == node.value:
                    logger.warning(
                        "left child is identical, self reference: %s", child is node
                    )
                    node.left = None
                    continue
                node = child
            else:
                child = node.right
                if child is node or child.value == node.value:
                    logger.warning(
                        "right child is identical, self reference: %s", child is node
                    )
                    node.right = None
                    continue
                node = child

    def _attach_leaf(
        self, value: float, count: int
    ) -> tuple[HistogramItem, HistogramItem | None]:
        new_item = HistogramItem(value)
        new_item.duplications = count
        new_item.count = count
        new_item.parent = self
        if value > self.value:
            self.right = new_item
            new_item.larger = self.larger
            new_item.smaller = self
            self.larger = new_item
            if new_item.larger is not None:
                new_item.larger.smaller = new_item
        else:
            self.left = new_item
            new_item.smaller = self.smaller
            new_item.larger = self
            self.smaller = new_item
            if new_item.smaller is not None:
                new_item.smaller.larger = new_item

        ancestor: HistogramItem | None = self
        while ancestor is not None:
            ancestor.count += count
            ancestor = ancestor.parent

        root = None
        if (self.left is None and value > self.value) or (
            self.right is None and value < self.value
        ):
            self.height += 1
            root = self.update_height(True)
        return new_item, root

    def delete(self) -> tuple[HistogramItem | None, HistogramItem | None]:
        """Remove one sample of this node's value from the tree.

        Returns the node that now stands in this node's place and the new
        root. A node with several duplications only loses one and returns
        itself with ``None`` as root; the last node of a tree returns
        ``(None, None)``.
        """
        if self.duplications > 1:
            self.duplications -= 1
            node: HistogramItem | None = self
            while node is not None:
                node.count -= 1
                node = node.parent
            return self, None

        if self.parent is None and self.left is None and self.right is None:
            return None, None

        affected_height = self.parent
        affected_count = self.parent
        replaced_by: HistogramItem | None = None

        if self.left is None and self.right is None:
            logger.debug("deleting a leaf node: %s", self.value)
            parent = self.parent
            if parent is not None:
                if parent.left is self:
                    parent.left = None
                elif parent.right is self:
                    parent.right = None
            if self.smaller is not None:
                self.smaller.larger = self.larger
            if self.larger is not None:
                self.larger.smaller = self.smaller
        else:
            logger.debug("deleting a non-leaf node: %s", self.value)
            if self.left is not None:
                replaced_by = self.largest_in_left()
                if replaced_by.parent is not self:
                    if replaced_by.left is not None:
                        replaced_by.left.parent = replaced_by.parent
                        replaced_by.parent.right = replaced_by.left
                    else:
                        replaced_by.parent.right = None
            else:
                replaced_by = self.smallest_in_right()
                if replaced_by.parent is not self:
                    if replaced_by.right is not None:
                        replaced_by.right.parent = replaced_by.parent
                        replaced_by.parent.left = replaced_by.right
                    else:
                        replaced_by.parent.left = None

            if replaced_by.parent is not self:
                node = replaced_by.parent
                while node is not None and node is not self:
                    node.count -= replaced_by.duplications
                    node = node.parent
                affected_height = replaced_by.parent
            else:
                affected_height = replaced_by

            replaced_by.count = self.count - self.duplications
            replaced_by.height = self.height

            replaced_by.parent = self.parent
            if self.parent is not None:
                if self.parent.left is self:
                    self.parent.left = replaced_by
                elif self.parent.right is self:
                    self.parent.right = replaced_by

            if replaced_by is not self.left:
                replaced_by.left = self.left
                if self.left is not None:
                    self.left.parent = replaced_by
            if replaced_by is not self.right:
                replaced_by.right = self.right
                if self.right is not None:
                    self.right.parent = replaced_by

            if replaced_by is not self.smaller:
                replaced_by.smaller = self.smaller
            if self.smaller is not None and self.smaller is not replaced_by:
                self.smaller.larger = replaced_by

            if replaced_by is not self.larger:
                replaced_by.larger = self.larger
            if self.larger is not None and self.larger is not replaced_by:
                self.larger.smaller = replaced_by

        self.right = None
        self.left = None
        self.smaller = None
        self.larger = None
        self.parent = None

        node = affected_count
        while node is not None:
            node.count -= self.duplications
            node = node.parent

        root = affected_height.update_height(False)
        return replaced_by, root

    def calc_height(self) -> tuple[int, int, int]:
        """Recompute this node's height; return it with both child heights."""
        left_height = self.left.height if self.left is not None else 0
        right_height = self.right.height if self.right is not None else 0
        self.height = max(left_height, right_height) + 1
        return self.height, left_height, right_height

    def update_height(self, is_inserting: bool) -> HistogramItem:
        """Rebalance from this node up to the root and return the root."""
        root = self
        node: HistogramItem | None = self
        while node is not None:
            _, left_height, right_height = node.calc_height()
            if left_height - right_height > 1:
                if is_inserting and node.left.right is not None:
                    node.left.left_rotate()
                node = node.right_rotate()
            elif right_height - left_height > 1:
                if is_inserting and node.right.left is not None:
                    node.right.right_rotate()
                node = node.left_rotate()
            root = node
            node = node.parent
        return root

    def left_rotate(self) -> HistogramItem:
        """Rotate left around this node; return the node taking its place."""
        pivot = self.right
        if pivot is None:
            return self

        self.count -= pivot.count
        pivot.count += self.count

        self.right = pivot.left
        if pivot.left is not None:
            self.count += pivot.left.count
            pivot.left.parent = self

        pivot.parent = self.parent
        if self.parent is not None:
            if self.parent.left is self:
                self.parent.left = pivot
            elif self.parent.right is self:
                self.parent.right = pivot
        self.parent = pivot
        pivot.left = self

        self.calc_height()
        pivot.calc_height()
        return pivot

    def right_rotate(self) -> HistogramItem:
        """Rotate right around this node; return the node taking its place."""
        pivot = self.left
        if pivot is None:
            return self

        self.count -= pivot.count
        pivot.count += self.count

        self.left = pivot.right
        if pivot.right is not None:
            self.count += pivot.right.count
            pivot.right.parent = self

        pivot.parent = self.parent
        if self.parent is not None:
            if self.parent.left is self:
                self.parent.left = pivot
            elif self.parent.right is self:
                self.parent.right = pivot
        self.parent = pivot
        pivot.right = self

        self.calc_height()
        pivot.calc_height()
        return pivot

    def describe(self) -> str:
        """Return a nested text description of this subtree."""
        left = self.left.describe() if self.left is not None else "nil"
        right = self.right.describe() if self.right is not None else "nil"
        return (
            f"value: {_format_value(self.value)}, height: {self.height}, "
            f"count: {self.count}, left: [{left}], right: [{right}]"
        )