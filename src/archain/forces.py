"""
Pairwise force kernels.

All performance-critical loops are JIT-compiled with Numba. These functions
must stay Numba-compatible: they take only numpy arrays and floats.

Every kernel works on a *pair table*: parallel arrays `pi`, `pj` (particle
indices, i < j in chain or input order) and `dr`, `dv` of shape (3, P) holding
the separation x_j - x_i and relative velocity v_j - v_i of each pair. The
table is built either from absolute coordinates or, for chain systems, from
chain-relative coordinates for the chain-neighbour and next-neighbour pairs.
Kernels add to an acceleration array of shape (3, N) in place; the same pair
term is applied with opposite signs to both members of the pair.
"""

import numpy as np
from numba import jit


@jit(nopython=True)
def absolute_pairs(pos, vel):
    """
    Build the pair table from absolute coordinates.

    Args:
        pos: Positions, shape (3, N)
        vel: Velocities, shape (3, N)

    Returns:
        tuple: (pi, pj, dr, dv) with P = N(N-1)/2 pairs
    """
    n = pos.shape[1]
    n_pairs = n * (n - 1) // 2
    pi = np.empty(n_pairs, dtype=np.int64)
    pj = np.empty(n_pairs, dtype=np.int64)
    dr = np.empty((3, n_pairs), dtype=np.float64)
    dv = np.empty((3, n_pairs), dtype=np.float64)

    k = 0
    for i in range(n):
        for j in range(i + 1, n):
            pi[k] = i
            pj[k] = j
            for d in range(3):
                dr[d, k] = pos[d, j] - pos[d, i]
                dv[d, k] = vel[d, j] - vel[d, i]
            k += 1

    return pi, pj, dr, dv


@jit(nopython=True)
def chain_pairs(index, pos, vel, chain_pos, chain_vel):
    """
    Build the pair table for a chained particle set.

    Pairs one link apart along the chain take their separation straight from
    the chain vector; pairs two links apart from the sum of two consecutive
    chain vectors. Only pairs three or more links apart are differenced in
    absolute coordinates, where the separation is large anyway.

    Args:
        index: Chain order, index[k] is the particle in chain slot k
        pos, vel: Absolute positions/velocities, shape (3, N)
        chain_pos, chain_vel: Chain vectors, shape (3, N); slot k < N-1 holds
            x[index[k+1]] - x[index[k]]

    Returns:
        tuple: (pi, pj, dr, dv)
    """
    n = index.shape[0]
    n_pairs = n * (n - 1) // 2
    pi = np.empty(n_pairs, dtype=np.int64)
    pj = np.empty(n_pairs, dtype=np.int64)
    dr = np.empty((3, n_pairs), dtype=np.float64)
    dv = np.empty((3, n_pairs), dtype=np.float64)

    k = 0
    for c in range(n - 1):
        pi[k] = index[c]
        pj[k] = index[c + 1]
        for d in range(3):
            dr[d, k] = chain_pos[d, c]
            dv[d, k] = chain_vel[d, c]
        k += 1

    for c in range(n - 2):
        pi[k] = index[c]
        pj[k] = index[c + 2]
        for d in range(3):
            dr[d, k] = chain_pos[d, c] + chain_pos[d, c + 1]
            dv[d, k] = chain_vel[d, c] + chain_vel[d, c + 1]
        k += 1

    for c in range(n):
        for e in range(c + 3, n):
            i = index[c]
            j = index[e]
            pi[k] = i
            pj[k] = j
            for d in range(3):
                dr[d, k] = pos[d, j] - pos[d, i]
                dv[d, k] = vel[d, j] - vel[d, i]
            k += 1

    return pi, pj, dr, dv


@jit(nopython=True)
def newtonian_acc(mass, pi, pj, dr, G, acc):
    """
    Add Newtonian gravity of every pair to `acc`.

    a_i += G m_j Δ / r³,  a_j -= G m_i Δ / r³  with Δ = x_j - x_i.
    """
    for k in range(pi.shape[0]):
        i = pi[k]
        j = pj[k]
        dx = dr[0, k]
        dy = dr[1, k]
        dz = dr[2, k]
        r2 = dx * dx + dy * dy + dz * dz
        rr3 = G / (r2 * np.sqrt(r2))

        acc[0, i] += dx * rr3 * mass[j]
        acc[1, i] += dy * rr3 * mass[j]
        acc[2, i] += dz * rr3 * mass[j]

        acc[0, j] -= dx * rr3 * mass[i]
        acc[1, j] -= dy * rr3 * mass[i]
        acc[2, j] -= dz * rr3 * mass[i]


@jit(nopython=True)
def potential_energy(mass, pi, pj, dr, G):
    """Total pairwise potential energy U = -G Σ m_i m_j / r."""
    u = 0.0
    for k in range(pi.shape[0]):
        dx = dr[0, k]
        dy = dr[1, k]
        dz = dr[2, k]
        r = np.sqrt(dx * dx + dy * dy + dz * dz)
        u -= G * mass[pi[k]] * mass[pj[k]] / r
    return u


@jit(nopython=True)
def min_free_fall_time(mass, pi, pj, dr, G):
    """
    Shortest pairwise free-fall time, π/2 · r^{3/2} / sqrt(2 G (m_i + m_j)).

    Returns +inf for a single particle.
    """
    t_min = np.inf
    for k in range(pi.shape[0]):
        dx = dr[0, k]
        dy = dr[1, k]
        dz = dr[2, k]
        r = np.sqrt(dx * dx + dy * dy + dz * dz)
        t = r * np.sqrt(r) / np.sqrt(2.0 * G * (mass[pi[k]] + mass[pj[k]]))
        if t < t_min:
            t_min = t
    return 0.5 * np.pi * t_min


@jit(nopython=True)
def pn1_acc(mass, vel, pi, pj, dr, dv, G, c, acc):
    """
    Add the first post-Newtonian (EIH) pair acceleration.

    Written in the centre-of-mass frame: the absolute velocities enter the
    expression, so the system should be at rest at the origin.

    Args:
        mass: Masses (N,)
        vel: Velocities the term is evaluated at, shape (3, N)
        pi, pj, dr, dv: Pair table
        G, c: Gravitational constant and speed of light
        acc: Output accelerations (3, N), added to in place
    """
    inv_c2 = 1.0 / (c * c)
    for k in range(pi.shape[0]):
        i = pi[k]
        j = pj[k]
        r2 = dr[0, k] ** 2 + dr[1, k] ** 2 + dr[2, k] ** 2
        r = np.sqrt(r2)
        nx = -dr[0, k] / r
        ny = -dr[1, k] / r
        nz = -dr[2, k] / r

        v1s = vel[0, i] ** 2 + vel[1, i] ** 2 + vel[2, i] ** 2
        v2s = vel[0, j] ** 2 + vel[1, j] ** 2 + vel[2, j] ** 2
        v12 = vel[0, i] * vel[0, j] + vel[1, i] * vel[1, j] + vel[2, i] * vel[2, j]
        nv1 = nx * vel[0, i] + ny * vel[1, i] + nz * vel[2, i]
        nv2 = nx * vel[0, j] + ny * vel[1, j] + nz * vel[2, j]
        gmr1 = G * mass[i] / r
        gmr2 = G * mass[j] / r

        a_i = -v1s - 2.0 * v2s + 4.0 * v12 + 1.5 * nv2 * nv2 + 5.0 * gmr1 + 4.0 * gmr2
        a_j = -v2s - 2.0 * v1s + 4.0 * v12 + 1.5 * nv1 * nv1 + 5.0 * gmr2 + 4.0 * gmr1
        b_i = 4.0 * nv1 - 3.0 * nv2
        b_j = -4.0 * nv2 + 3.0 * nv1

        coef = G / r2 * inv_c2
        ci = coef * mass[j]
        cj = coef * mass[i]

        acc[0, i] += ci * (a_i * nx - b_i * dv[0, k])
        acc[1, i] += ci * (a_i * ny - b_i * dv[1, k])
        acc[2, i] += ci * (a_i * nz - b_i * dv[2, k])

        acc[0, j] -= cj * (a_j * nx - b_j * dv[0, k])
        acc[1, j] -= cj * (a_j * ny - b_j * dv[1, k])
        acc[2, j] -= cj * (a_j * nz - b_j * dv[2, k])


@jit(nopython=True)
def pn2_acc(mass, vel, pi, pj, dr, dv, G, c, acc):
    """Add the second post-Newtonian pair acceleration (conservative 2PN part)."""
    inv_c4 = 1.0 / (c * c * c * c)
    for k in range(pi.shape[0]):
        i = pi[k]
        j = pj[k]
        r2 = dr[0, k] ** 2 + dr[1, k] ** 2 + dr[2, k] ** 2
        r = np.sqrt(r2)
        nx = -dr[0, k] / r
        ny = -dr[1, k] / r
        nz = -dr[2, k] / r

        v1s = vel[0, i] ** 2 + vel[1, i] ** 2 + vel[2, i] ** 2
        v2s = vel[0, j] ** 2 + vel[1, j] ** 2 + vel[2, j] ** 2
        v1q = v1s * v1s
        v2q = v2s * v2s
        v12 = vel[0, i] * vel[0, j] + vel[1, i] * vel[1, j] + vel[2, i] * vel[2, j]
        nv1 = nx * vel[0, i] + ny * vel[1, i] + nz * vel[2, i]
        nv2 = nx * vel[0, j] + ny * vel[1, j] + nz * vel[2, j]
        nv1s = nv1 * nv1
        nv2s = nv2 * nv2
        gmr1 = G * mass[i] / r
        gmr2 = G * mass[j] / r
        m1s = mass[i] * mass[i]
        m2s = mass[j] * mass[j]
        m12 = mass[i] * mass[j]
        g2r2 = G * G / r2

        a_i = (-2.0 * v2q + 4.0 * v2s * v12 - 2.0 * v12 * v12
               + nv2s * (1.5 * v1s + 4.5 * v2s - 6.0 * v12 - 1.875 * nv2s)
               + gmr1 * (-3.75 * v1s + 1.25 * v2s - 2.5 * v12 + 19.5 * nv1s - 39.0 * nv1 * nv2 + 8.5 * nv2s)
               + gmr2 * (4.0 * v2s - 8.0 * v12 + 2.0 * nv1s - 4.0 * nv1 * nv2 - 6.0 * nv2s)
               + g2r2 * (-14.25 * m1s - 9.0 * m2s - 34.5 * m12))
        a_j = (-2.0 * v1q + 4.0 * v1s * v12 - 2.0 * v12 * v12
               + nv1s * (1.5 * v2s + 4.5 * v1s - 6.0 * v12 - 1.875 * nv1s)
               + gmr2 * (-3.75 * v2s + 1.25 * v1s - 2.5 * v12 + 19.5 * nv2s - 39.0 * nv1 * nv2 + 8.5 * nv1s)
               + gmr1 * (4.0 * v1s - 8.0 * v12 + 2.0 * nv2s - 4.0 * nv1 * nv2 - 6.0 * nv1s)
               + g2r2 * (-14.25 * m2s - 9.0 * m1s - 34.5 * m12))
        b_i = (v1s * nv2 + 4.0 * v2s * nv1 - 5.0 * v2s * nv2 - 4.0 * v12 * nv1 + 4.0 * v12 * nv2
               - 6.0 * nv1 * nv2s + 4.5 * nv2 * nv2s + gmr1 * (-15.75 * nv1 + 13.75 * nv2)
               + gmr2 * (-2.0 * nv1 - 2.0 * nv2))
        b_j = (-v2s * nv1 - 4.0 * v1s * nv2 + 5.0 * v1s * nv2 + 4.0 * v12 * nv2 - 4.0 * v12 * nv1
               + 6.0 * nv2 * nv1s - 4.5 * nv1 * nv1s + gmr2 * (15.75 * nv2 - 13.75 * nv1)
               + gmr1 * (2.0 * nv2 + 2.0 * nv1))

        coef = G / r2 * inv_c4
        ci = coef * mass[j]
        cj = coef * mass[i]

        acc[0, i] += ci * (a_i * nx - b_i * dv[0, k])
        acc[1, i] += ci * (a_i * ny - b_i * dv[1, k])
        acc[2, i] += ci * (a_i * nz - b_i * dv[2, k])

        acc[0, j] -= cj * (a_j * nx - b_j * dv[0, k])
        acc[1, j] -= cj * (a_j * ny - b_j * dv[1, k])
        acc[2, j] -= cj * (a_j * nz - b_j * dv[2, k])


@jit(nopython=True)
def pn2p5_acc(mass, pi, pj, dr, dv, G, c, acc):
    """
    Add the 2.5 post-Newtonian (gravitational-wave radiation reaction) term.

    Dissipative: drains orbital energy at the quadrupole rate.
    """
    inv_c5 = 1.0 / (c * c * c * c * c)
    for k in range(pi.shape[0]):
        i = pi[k]
        j = pj[k]
        r2 = dr[0, k] ** 2 + dr[1, k] ** 2 + dr[2, k] ** 2
        r = np.sqrt(r2)
        nx = -dr[0, k] / r
        ny = -dr[1, k] / r
        nz = -dr[2, k] / r

        dv2 = dv[0, k] ** 2 + dv[1, k] ** 2 + dv[2, k] ** 2
        nv = -(nx * dv[0, k] + ny * dv[1, k] + nz * dv[2, k])
        gmr1 = G * mass[i] / r
        gmr2 = G * mass[j] / r

        a_i = nv * (3.0 * dv2 - 6.0 * gmr1 + 52.0 / 3.0 * gmr2)
        a_j = nv * (3.0 * dv2 - 6.0 * gmr2 + 52.0 / 3.0 * gmr1)
        b_i = -dv2 + 2.0 * gmr1 - 8.0 * gmr2
        b_j = -dv2 + 2.0 * gmr2 - 8.0 * gmr1

        coef = 0.8 * G * G * mass[i] * mass[j] / (r2 * r) * inv_c5

        acc[0, i] += coef * (a_i * nx - b_i * dv[0, k])
        acc[1, i] += coef * (a_i * ny - b_i * dv[1, k])
        acc[2, i] += coef * (a_i * nz - b_i * dv[2, k])

        acc[0, j] -= coef * (a_j * nx - b_j * dv[0, k])
        acc[1, j] -= coef * (a_j * ny - b_j * dv[1, k])
        acc[2, j] -= coef * (a_j * nz - b_j * dv[2, k])


@jit(nopython=True)
def tidal_acc(mass, radius, k_apsidal, tau, pi, pj, dr, dv, G, acc):
    """
    Add the equilibrium-tide force with constant time lag.

    A body with non-zero apsidal constant k and radius R raised a tide by its
    partner of mass m; the pair force is

        F = 3 G k R⁵ m² (1 + 3 τ (Δv·Δ) / r²) / r⁸ · Δ

    applied as +F/m_i to body i and -F/m_j to body j.
    """
    for k in range(pi.shape[0]):
        i = pi[k]
        j = pj[k]
        if k_apsidal[i] == 0.0 and k_apsidal[j] == 0.0:
            continue

        dx = dr[0, k]
        dy = dr[1, k]
        dz = dr[2, k]
        r2 = dx * dx + dy * dy + dz * dz
        r8 = r2 * r2 * r2 * r2
        rdot = (dv[0, k] * dx + dv[1, k] * dy + dv[2, k] * dz) / r2

        coef = 0.0
        if k_apsidal[i] != 0.0:
            coef += 3.0 * G * k_apsidal[i] * radius[i] ** 5 * mass[j] ** 2 * (1.0 + 3.0 * tau[i] * rdot) / r8
        if k_apsidal[j] != 0.0:
            coef += 3.0 * G * k_apsidal[j] * radius[j] ** 5 * mass[i] ** 2 * (1.0 + 3.0 * tau[j] * rdot) / r8

        ci = coef / mass[i]
        cj = coef / mass[j]
        acc[0, i] += ci * dx
        acc[1, i] += ci * dy
        acc[2, i] += ci * dz
        acc[0, j] -= cj * dx
        acc[1, j] -= cj * dy
        acc[2, j] -= cj * dz
