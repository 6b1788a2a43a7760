import logging
import random
import shutil
import time
from collections.abc import Collection, Iterable, Iterator
from typing import Callable, cast, Generic, Optional, Type

import ordering
from ordering import CompareFn, T

logger = logging.getLogger(__name__)

# smallest width format_tree will try to render into
MIN_FORMAT_WIDTH = 8
TRUNCATE_TEXT = '..'


class InvariantViolation(RuntimeError):
    """Raised by AvlSet.check_invariants when the tree no longer satisfies an AVL or search tree invariant."""


class AvlNode(Generic[T]):
    """A single tree node. The node exclusively owns its children; there are no parent links.

    The fields are plain attributes so tests and diagnostics can walk the tree. Writing to them directly bypasses the
    owning AvlSet and can break every invariant it maintains.
    """
    __slots__ = 'key', 'left', 'right', 'height', 'balance'

    def __init__(self, key: T):
        self.key: T = key
        self.left: 'None | AvlNode[T]' = None
        self.right: 'None | AvlNode[T]' = None
        # number of edges on the longest downward path; 0 for a leaf, an absent subtree counts as -1
        self.height: int = 0
        # height of left subtree - height of right subtree; -1, 0 or 1 when balanced
        self.balance: int = 0

    def __str__(self):
        return f'{self.__class__.__name__}({self.key!r})'

    def __repr__(self):
        return str(self)

    def get_children(self) -> tuple['AvlNode[T]', ...]:
        """Get a tuple of this node's children. May have 0, 1, or 2 elements. With 2 children the order is always
        (left, right).
        """
        return tuple(i for i in (self.left, self.right) if i is not None)

    def update(self) -> 'AvlNode[T]':
        """Recompute height and balance from the cached heights of the children only. Assumes the children are already
        up to date; nothing below this node is touched. Returns self.
        """
        left = self.left.height if self.left is not None else -1
        right = self.right.height if self.right is not None else -1
        self.balance = left - right
        self.height = max(left, right) + 1
        return self

    def rotate_left(self) -> 'AvlNode[T]':
        """Single left rotation rooted at self, for a right heavy node. self must have a right child.

        Only self is updated; the returned new subtree root (the former right child) is left for the caller to update.
        """
        #    *A                  C
        #   B   C      =>     *A   G
        #      F G            B F
        r = cast(AvlNode[T], self.right)
        logger.debug(f'rotate left at {self.key!r}')
        self.right = r.left
        r.left = self
        self.update()
        return r

    def rotate_right(self) -> 'AvlNode[T]':
        """Single right rotation rooted at self, for a left heavy node. self must have a left child.

        Only self is updated; the returned new subtree root (the former left child) is left for the caller to update.
        """
        #      *A              B
        #     B   C    =>    D  *A
        #    D E               E  C
        l = cast(AvlNode[T], self.left)
        logger.debug(f'rotate right at {self.key!r}')
        self.left = l.right
        l.right = self
        self.update()
        return l

    def rotate_left_right(self) -> 'AvlNode[T]':
        """Left rotate the left child, then right rotate self. Use when self is left heavy and its left child is right
        heavy.
        """
        self.left = cast(AvlNode[T], self.left).rotate_left().update()
        return self.rotate_right()

    def rotate_right_left(self) -> 'AvlNode[T]':
        """Right rotate the right child, then left rotate self. Use when self is right heavy and its right child is left
        heavy.
        """
        self.right = cast(AvlNode[T], self.right).rotate_right().update()
        return self.rotate_left()

    def _calculate_height(self) -> int:
        """Height computed by walking the subtree instead of reading the cached field. Only for checking the cache."""
        depth = 0
        next_level = list(self.get_children())
        while next_level:
            depth += 1
            next_level = [n for node in next_level for n in node.get_children()]
        return depth


def rebalance(node: 'None | AvlNode[T]') -> 'None | AvlNode[T]':
    """Refresh the height and balance of a single node and rotate if it is out of balance. Children must already be
    up to date, so this has to run bottom-up on every node of a changed path, right after its child slot is assigned.

    Returns the root of the subtree, which is a different node if a rotation happened. None passes through.
    """
    if node is None:
        return node
    node.update()
    if node.balance < -1:
        # right heavy
        if cast(AvlNode[T], node.right).balance > 0:
            node = node.rotate_right_left()
        else:
            node = node.rotate_left()
    elif node.balance > 1:
        # left heavy
        if cast(AvlNode[T], node.left).balance < 0:
            node = node.rotate_left_right()
        else:
            node = node.rotate_right()
    else:
        return node
    # the demoted node was updated by the rotation, so the new root can be updated from its children
    return node.update()


def _detach_max(node: 'AvlNode[T]') -> tuple['None | AvlNode[T]', 'AvlNode[T]']:
    """Unlink the rightmost node of the subtree rooted at node.

    Returns (new_root, detached). The detached node's former left subtree takes its place under its parent, and every
    node on the walked path is rebalanced on the way back up.
    """
    if node.right is None:
        return node.left, node
    right, detached = _detach_max(node.right)
    node.right = right
    return rebalance(node), detached


class AvlSet(Collection, Generic[T]):
    """An ordered set of unique keys kept in an AVL tree.

    Keys are ordered by a three-way comparator, ordering.compare by default, which places None after every other value.
    Duplicates are never stored: adding a key that compares equal to a present one is a no-op. Missing keys are not
    errors; remove returns None and contains returns False.

    Not thread safe. Callers sharing a set between threads have to lock around every call.
    """
    __slots__ = ('_root', '_size', '_compare', '_node_cls')

    def __init__(self, init: Optional[Iterable[T]] = None, *, compare: CompareFn = ordering.compare,
                 node_cls: Type[AvlNode] = AvlNode):
        """Create a set, optionally adding every value of init in order. compare is any three-way comparator and
        node_cls the node type to build, for subclasses that need extra per-node state.
        """
        self._root: 'None | AvlNode[T]' = None
        self._size: int = 0
        self._compare: CompareFn = compare
        self._node_cls: Type[AvlNode] = node_cls
        if init is not None:
            self.add_all(init)

    def __len__(self):
        return self._size

    def __iter__(self) -> Iterator[T]:
        return self.sorted()

    def __contains__(self, key):
        return self.contains(key)

    def __str__(self):
        return f'{self.__class__.__name__}({list(self)!r})'

    def __repr__(self):
        return str(self)

    def __eq__(self, other):
        """Sets are equal if they hold equal keys in the same order, whatever the shape of the trees."""
        if not isinstance(other, AvlSet):
            return NotImplemented
        if len(self) != len(other):
            return False
        for mine, theirs in zip(self, other, strict=True):
            if self._compare(mine, theirs) != 0:
                return False
        return True

    __hash__ = None  # type: ignore[assignment]

    @property
    def root(self) -> 'None | AvlNode[T]':
        """The root node, or None if the set is empty.

        This is an escape hatch for tests and diagnostics. The nodes are the live tree: changing any of their
        attributes bypasses add and remove, and the set's invariants (ordering, balance, cached heights and size) are
        no longer guaranteed afterwards.
        """
        return self._root

    def replace_root(self, root: 'None | AvlNode[T]', size: Optional[int] = None):
        """Install root as the whole tree. Unsafe: nothing checks that root is ordered or balanced, or that its cached
        heights are right. size overrides the element count; when omitted the nodes are counted.
        """
        self._root = root
        self._size = size if size is not None else sum(1 for _ in self.nodes())

    def size(self) -> int:
        return self._size

    def is_empty(self) -> bool:
        return self._size == 0

    def height(self) -> int:
        """Cached height of the root, -1 for an empty set."""
        return self._root.height if self._root is not None else -1

    def clear(self):
        """Removes all elements from the set."""
        logger.debug(f'clearing {self._size} elements')
        self._root = None
        self._size = 0

    def _find_node(self, key) -> 'None | AvlNode[T]':
        node = self._root
        while node is not None:
            order = self._compare(key, node.key)
            if order == 0:
                return node
            # lesser keys are always in the left subtree, greater keys in the right subtree
            node = node.left if order < 0 else node.right
        return None

    def contains(self, key) -> bool:
        """Return True if a key equal to key is in the set."""
        return self._find_node(key) is not None

    def find(self, key) -> Optional[T]:
        """Return the stored key equal to key, or None if there is none."""
        node = self._find_node(key)
        return node.key if node is not None else None

    def _add(self, node: 'None | AvlNode[T]', key: T) -> 'AvlNode[T]':
        """Insert key below node, which must not already hold an equal key. Return the subtree root for the caller to
        rebalance.
        """
        if node is None:
            # fresh leaf; height and balance start at 0
            return self._node_cls(key)
        if self._compare(key, node.key) > 0:
            node.right = rebalance(self._add(node.right, key))
        else:
            node.left = rebalance(self._add(node.left, key))
        return node

    def add(self, key: T) -> bool:
        """Add a key. Return True if it was added, False if an equal key was already present (the set is unchanged and
        the given key is discarded).
        """
        if self.contains(key):
            logger.debug(f'{key!r} already present, not added')
            return False
        self._root = rebalance(self._add(self._root, key))
        self._size += 1
        return True

    def add_all(self, keys: Iterable[T]) -> int:
        """Add every key in iteration order. Returns the number of keys actually added."""
        added = 0
        for key in keys:
            added += int(self.add(key))
        return added

    def _splice(self, node: 'AvlNode[T]') -> 'None | AvlNode[T]':
        """Return the subtree that takes node's place once node is removed. node is left without children."""
        if node.left is None:
            # leaf or right child only
            replacement = node.right
        elif node.right is None:
            replacement = node.left
        else:
            # two children: the in-order predecessor (rightmost node of the left subtree) has no right child, so it can
            # be lifted out and put in node's position
            left, replacement = _detach_max(node.left)
            replacement.left = left
            replacement.right = node.right
        node.left = node.right = None
        return replacement

    def _remove(self, node: 'None | AvlNode[T]', key: T) -> 'None | AvlNode[T]':
        """Remove key from below node. The key must be present. Return the subtree root for the caller to rebalance."""
        # the key is known to be present, so the search path never runs off the tree
        node = cast(AvlNode[T], node)
        order = self._compare(key, node.key)
        if order > 0:
            node.right = rebalance(self._remove(node.right, key))
        elif order < 0:
            node.left = rebalance(self._remove(node.left, key))
        else:
            return self._splice(node)
        return node

    def remove(self, key: T) -> Optional[T]:
        """Remove the key equal to key. Return the key that was stored, or None if there was no such key."""
        found = self._find_node(key)
        if found is None:
            logger.debug(f'{key!r} not present, nothing removed')
            return None
        self._root = rebalance(self._remove(self._root, key))
        self._size -= 1
        return found.key

    def discard(self, key: T):
        """Remove key if it is present."""
        self.remove(key)

    def sorted(self) -> Iterator[T]:
        """Return an iterator over the keys in ascending order."""
        for node in self._in_order_nodes():
            yield node.key

    def nodes(self) -> Iterator[AvlNode[T]]:
        """Pre-order iterator over every node. Same escape hatch caveats as root."""
        stack: list[AvlNode[T]] = [self._root] if self._root is not None else []
        while stack:
            node = stack.pop()
            yield node
            # push right first so the left subtree is visited first
            stack.extend(reversed(node.get_children()))

    def check_invariants(self):
        """Walk the whole tree and raise InvariantViolation at the first broken invariant: cached height or balance
        not matching the subtree, a balance outside -1..1, keys out of order or repeated, or a wrong size. Heights are
        recomputed from scratch, so this is slow and meant for tests and debugging.
        """
        count = 0
        for node in self.nodes():
            count += 1
            left = node.left._calculate_height() if node.left is not None else -1
            right = node.right._calculate_height() if node.right is not None else -1
            if node.height != max(left, right) + 1:
                raise InvariantViolation(f'{node} has cached height {node.height}, expected {max(left, right) + 1}')
            if node.balance != left - right:
                raise InvariantViolation(f'{node} has cached balance {node.balance}, expected {left - right}')
            if abs(node.balance) > 1:
                raise InvariantViolation(f'{node} is out of balance ({node.balance})')
        if count != self._size:
            raise InvariantViolation(f'size is {self._size} but {count} nodes are reachable')
        previous: 'None | AvlNode[T]' = None
        for node in self._in_order_nodes():
            if previous is not None and self._compare(previous.key, node.key) >= 0:
                raise InvariantViolation(f'{previous} is not less than its in-order successor {node}')
            previous = node

    def _in_order_nodes(self) -> Iterator[AvlNode[T]]:
        stack: list[AvlNode[T]] = []
        node = self._root
        while stack or node is not None:
            # go as far left as possible, then visit and continue with the right subtree
            while node is not None:
                stack.append(node)
                node = node.left
            node = stack.pop()
            yield node
            node = node.right

    def format_tree(self, max_width: Optional[int] = None, min_chars_per_node: int = 3, empty_node_text: str = '<>',
                    node_to_str: Optional[Callable[[AvlNode[T]], str]] = None) -> str:
        """Render the tree as text, one line of nodes per level with a line of / and \\ connectors in between.

        max_width is the width of each line; None (the default) uses the current console width. A level is only drawn
        if every node slot gets at least min_chars_per_node characters; otherwise rendering stops with a ... line.
        Longer node text is truncated. empty_node_text fills slots where a parent has no child, and node_to_str turns a
        node into its label (the key by default).
        """
        if node_to_str is None:
            node_to_str = lambda node: str(node.key)
        if max_width is None:
            # leave the last column free so the terminal doesn't wrap
            max_width = shutil.get_terminal_size((120, 24)).columns - 1
        if max_width < MIN_FORMAT_WIDTH:
            raise ValueError(f'max_width of {max_width} needs to be at least {MIN_FORMAT_WIDTH}')
        if min_chars_per_node < len(TRUNCATE_TEXT):
            raise ValueError(f'min_chars_per_node of {min_chars_per_node} needs to be at least {len(TRUNCATE_TEXT)}')
        if self._root is None:
            return empty_node_text
        lines: list[str] = []
        # left to right; level n has 2^n slots, empty ones are None
        level: list[None | AvlNode[T]] = [self._root]
        depth = 0
        while any(node is not None for node in level):
            edges = [round(i * max_width / len(level)) for i in range(len(level) + 1)]
            widths = [end - start for start, end in zip(edges, edges[1:])]
            # one character of every slot is kept as a gap between neighbours
            if min(widths) - 1 < min_chars_per_node:
                lines.append(f'{"...": ^{max_width}}'.rstrip())
                break
            connectors: list[str] = []
            labels: list[str] = []
            next_level: list[None | AvlNode[T]] = []
            for idx, (node, width) in enumerate(zip(level, widths)):
                if node is None:
                    label = empty_node_text
                    next_level.extend((None, None))
                else:
                    label = node_to_str(node)
                    next_level.extend((node.left, node.right))
                if len(label) > width - 1:
                    label = label[:width - 1 - len(TRUNCATE_TEXT)] + TRUNCATE_TEXT
                labels.append(f'{label:^{width}}')
                if depth:
                    connectors.append(_connector(node is not None, idx % 2 == 0, width))
            if depth:
                lines.append(''.join(connectors).rstrip())
            lines.append(''.join(labels).rstrip())
            level = next_level
            depth += 1
        return '\n'.join(lines)

    def print_tree(self, *args, **kwargs):
        """Print format_tree to the console. Takes the same arguments."""
        print(self.format_tree(*args, **kwargs))


def _connector(present: bool, is_left: bool, width: int) -> str:
    """The connector drawn above a node slot: a slash under the label's centre, with dashes reaching towards the
    sibling (and so towards the parent between them).
    """
    if not present:
        return ' ' * width
    centre = (width - 1) // 2
    if is_left:
        return ' ' * centre + '/' + '-' * (width - centre - 1)
    return '-' * centre + '\\' + ' ' * (width - centre - 1)


def stress_test(iters: int = 1, iters_per_iter: int = 1000, delete_prob: float = .1, seed: Optional[int] = None,
                print_time: bool = True, print_tree: bool = False):
    """Run random adds and removes against a builtin set as reference. Raises AssertionError (or InvariantViolation)
    on the first mismatch.
    """
    rng = random.Random(seed)
    start_time = time.time()
    for _ in range(iters):
        vals: set[int] = set()
        tree: AvlSet[int] = AvlSet()
        assert(len(tree) == 0)
        assert(tree.root is None)
        for _ in range(iters_per_iter):
            if rng.random() <= delete_prob:
                if vals:
                    # choosing from a set is O(N), fine for a test
                    val = rng.choice(tuple(vals))
                    assert(tree.remove(val) == val)
                    vals.remove(val)
                # removing something that isn't there changes nothing
                missing = rng.randint(100001, 200000)
                assert(tree.remove(missing) is None)
            else:
                val = rng.randint(-100000, 100000)
                assert(tree.add(val) != (val in vals))
                vals.add(val)
        assert(len(tree) == len(vals))
        tree.check_invariants()
        assert(list(tree) == sorted(vals))
        if print_tree:
            tree.print_tree()
        for val in vals:
            # already present, so nothing changes
            assert(not tree.add(val))
            assert(val in tree)
        assert(len(tree) == len(vals))
        for val in vals:
            assert(tree.remove(val) == val)
            assert(val not in tree)
        tree.check_invariants()
        assert(len(tree) == 0)
        assert(tree.root is None)
        assert(list(tree) == [])
        assert(not tree)
    total_time = time.time() - start_time
    if print_time:
        print(f'Test successful with {iters} iterations and {iters_per_iter} steps per iteration')
        print(f'Total time of {total_time:.2f}s and average time of {(total_time / iters):.2f}s per iteration')


if __name__ == '__main__':
    stress_test()
