"""
Chain coordinates.

The particles are ordered into a chain that keeps close pairs adjacent.
For chain order `index` (index[k] is the particle in slot k) the chain
vectors are

    chain[k] = x[index[k+1]] - x[index[k]]     for k = 0 .. N-2
    chain[N-1] = x[index[0]]                    (absolute position of the head)

so small separations are carried directly as small numbers rather than as
differences of two large absolute coordinates. The last slot anchors the
chain in space, making the transformation exactly invertible.

Chain construction is greedy: all pair distances are sorted, the shortest
pair starts the chain and the chain grows at either end by the shortest
remaining edge to an unvisited particle.
"""

from collections import deque

import numpy as np

from archain.coords import Coords


def calc_chain_index(pos: Coords) -> np.ndarray:
    """
    Compute the chain order of a set of positions.

    Args:
        pos: Particle positions

    Returns:
        Permutation of range(N) as an int64 array
    """
    n = len(pos)
    if n < 2:
        return np.arange(n, dtype=np.int64)

    pi, pj = np.triu_indices(n, k=1)
    sep = pos.data[:, pj] - pos.data[:, pi]
    dist2 = np.einsum('ij,ij->j', sep, sep)
    order = np.argsort(dist2, kind='stable')
    edges = [(int(pi[k]), int(pj[k])) for k in order]

    chain = deque(edges[0])
    visited = set(edges[0])
    while len(chain) < n:
        head, tail = chain[0], chain[-1]
        for a, b in edges:
            if a == head and b not in visited:
                chain.appendleft(b)
                visited.add(b)
                break
            if b == head and a not in visited:
                chain.appendleft(a)
                visited.add(a)
                break
            if a == tail and b not in visited:
                chain.append(b)
                visited.add(b)
                break
            if b == tail and a not in visited:
                chain.append(a)
                visited.add(a)
                break

    return np.array(chain, dtype=np.int64)


def inverse_index(index: np.ndarray) -> np.ndarray:
    """Slot of every particle: inverse_index(index)[index[k]] == k."""
    slots = np.empty_like(index)
    slots[index] = np.arange(len(index), dtype=index.dtype)
    return slots


def to_chain(cartesian: Coords, index: np.ndarray, out: Coords = None) -> Coords:
    """
    Transform absolute vectors to chain vectors.

    Args:
        cartesian: Absolute positions, velocities or accelerations
        index: Chain order
        out: Optional output buffer

    Returns:
        Chain vectors (last slot holds the head's absolute vector)
    """
    if out is None:
        out = Coords(len(cartesian))
    ordered = cartesian.data[:, index]
    out.data[:, :-1] = ordered[:, 1:] - ordered[:, :-1]
    out.data[:, -1] = ordered[:, 0]
    return out


def to_cartesian(chain: Coords, index: np.ndarray, out: Coords = None) -> Coords:
    """
    Transform chain vectors back to absolute vectors.

    Inverse of `to_chain` up to floating-point rounding of the running sum.
    """
    if out is None:
        out = Coords(len(chain))
    head = chain.data[:, -1]
    out.data[:, index[0]] = head
    out.data[:, index[1:]] = head[:, None] + np.cumsum(chain.data[:, :-1], axis=1)
    return out


def update_chain(chain: Coords, old_index: np.ndarray, new_index: np.ndarray) -> Coords:
    """
    Re-express chain vectors under a new chain order.

    Every new link is the signed sum of the old links between its two
    particles, so no absolute coordinates are differenced.
    """
    n = len(chain)
    slots = inverse_index(old_index)
    new_chain = Coords(n)
    for k in range(n - 1):
        a = slots[new_index[k]]
        b = slots[new_index[k + 1]]
        if a < b:
            new_chain.data[:, k] = np.sum(chain.data[:, a:b], axis=1)
        else:
            new_chain.data[:, k] = -np.sum(chain.data[:, b:a], axis=1)
    head_slot = slots[new_index[0]]
    new_chain.data[:, -1] = chain.data[:, -1] + np.sum(chain.data[:, :head_slot], axis=1)
    return new_chain
