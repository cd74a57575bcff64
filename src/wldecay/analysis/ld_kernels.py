"""Numba-compiled kernels for marker-pair accumulation.

All kernels share one bin-membership rule: marker j > i on the same
chromosome falls in bin b when

    pos[i] + edges[b] <= pos[j] < pos[i] + edges[b + 1]

Work is split into fixed chunks (of markers or of individuals) that are run
with ``numba.prange``. Each chunk writes its own row of partial sums and the
rows are reduced afterwards in chunk order, so results do not depend on the
number of threads.
"""

from __future__ import annotations

import numba
import numpy as np


# =============================================================================
# Layout helpers
# =============================================================================


def block_ends(chrom_index: np.ndarray) -> np.ndarray:
    """For every marker, the index one past the last marker of its chromosome."""
    n = len(chrom_index)
    ends = np.empty(n, dtype=np.int64)
    if n == 0:
        return ends
    boundaries = np.flatnonzero(chrom_index[1:] != chrom_index[:-1]) + 1
    block_stops = np.concatenate((boundaries, [n]))
    block_starts = np.concatenate(([0], boundaries))
    for start, stop in zip(block_starts, block_stops):
        ends[start:stop] = stop
    return ends


def marker_chunks(chrom_index: np.ndarray, chunk_size: int = 256) -> tuple[np.ndarray, np.ndarray]:
    """Split markers into chunks that never span two chromosomes.

    Returns:
        Tuple of (chunk_starts, chunk_stops)
    """
    starts: list[int] = []
    stops: list[int] = []
    n = len(chrom_index)
    pos = 0
    ends = block_ends(chrom_index)
    while pos < n:
        stop = min(pos + chunk_size, int(ends[pos]))
        starts.append(pos)
        stops.append(stop)
        pos = stop
    return np.asarray(starts, dtype=np.int64), np.asarray(stops, dtype=np.int64)


@numba.njit(cache=True)
def window_starts(pos: np.ndarray, ends: np.ndarray, edges: np.ndarray) -> np.ndarray:
    """First partner index of every marker for every bin edge.

    ``starts[e, i]`` is the smallest j in (i, ends[i]) with
    ``pos[j] >= pos[i] + edges[e]``, or ``ends[i]`` when there is none. Pairs
    (i, j) in bin b are exactly ``starts[b, i] <= j < starts[b + 1, i]``.
    """
    n_edges = len(edges)
    n = len(pos)
    starts = np.empty((n_edges, n), dtype=np.int64)
    for e in range(n_edges):
        j = 0
        for i in range(n):
            # the pointer only moves forward because pos is sorted per block
            if j < i + 1:
                j = i + 1
            end = ends[i]
            if j > end:
                j = end
            target = pos[i] + edges[e]
            while j < end and pos[j] < target:
                j += 1
            starts[e, i] = j
            if i + 1 < n and ends[i + 1] != end:
                j = 0
    return starts


# =============================================================================
# Weighted LD accumulation
# =============================================================================


@numba.njit(cache=True, parallel=True)
def naive_pair_sums(
    centered: np.ndarray,
    called: np.ndarray,
    weights: np.ndarray,
    pos: np.ndarray,
    ends: np.ndarray,
    edges: np.ndarray,
    chunk_starts: np.ndarray,
    chunk_stops: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Direct scan over every marker pair inside the distance window.

    Args:
        centered: (n_individuals, n_markers) centred genotypes, 0 where missing
        called: (n_individuals, n_markers) 1.0 where called, 0.0 where missing
        weights: Per-marker weights
        pos: Marker positions (cM), sorted within each chromosome block
        ends: Block end index of each marker (see block_ends)
        edges: Bin edges (cM)
        chunk_starts: First marker of each chunk
        chunk_stops: One past the last marker of each chunk

    Returns:
        Per-chunk (numerator, individual count, marker-pair count) tables of
        shape (n_chunks, n_bins)
    """
    n_ind = centered.shape[0]
    n_bins = len(edges) - 1
    n_chunks = len(chunk_starts)
    num = np.zeros((n_chunks, n_bins))
    cnt = np.zeros((n_chunks, n_bins))
    pairs = np.zeros((n_chunks, n_bins))

    for ch in numba.prange(n_chunks):
        for i in range(chunk_starts[ch], chunk_stops[ch]):
            b = 0
            for j in range(i + 1, ends[i]):
                while b < n_bins and pos[j] >= pos[i] + edges[b + 1]:
                    b += 1
                if b == n_bins:
                    break
                if pos[j] < pos[i] + edges[0]:
                    continue
                s = 0.0
                c = 0.0
                for k in range(n_ind):
                    s += centered[k, i] * centered[k, j]
                    c += called[k, i] * called[k, j]
                num[ch, b] += weights[i] * weights[j] * s
                cnt[ch, b] += c
                pairs[ch, b] += 1.0
    return num, cnt, pairs


@numba.njit(cache=True, parallel=True)
def fast_pair_sums(
    centered: np.ndarray,
    called: np.ndarray,
    weights: np.ndarray,
    chrom_index: np.ndarray,
    n_chrom: int,
    starts: np.ndarray,
    chunk_size: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Prefix-sum accumulation, one individual at a time.

    The weighted LD numerator of a bin factorises over individuals:
    sum_pairs w_i w_j sum_k c_ki c_kj = sum_k sum_i (w_i c_ki) * S_k(window_b(i)),
    where S_k is a window sum of w_j c_kj read off a prefix-sum array. Each
    individual therefore costs O(markers * bins) instead of a scan over all
    pairs.

    Returns:
        Per-chunk (numerator, individual count) tables of shape
        (n_chunks, n_chrom, n_bins)
    """
    n_ind, n_markers = centered.shape
    n_bins = starts.shape[0] - 1
    n_chunks = (n_ind + chunk_size - 1) // chunk_size
    num = np.zeros((n_chunks, n_chrom, n_bins))
    cnt = np.zeros((n_chunks, n_chrom, n_bins))

    for ch in numba.prange(n_chunks):
        pv = np.zeros(n_markers + 1)
        pm = np.zeros(n_markers + 1)
        first = ch * chunk_size
        last = min(first + chunk_size, n_ind)
        for k in range(first, last):
            for j in range(n_markers):
                pv[j + 1] = pv[j] + weights[j] * centered[k, j]
                pm[j + 1] = pm[j] + called[k, j]
            for i in range(n_markers):
                mi = called[k, i]
                if mi == 0.0:
                    continue
                vi = weights[i] * centered[k, i]
                c = chrom_index[i]
                for b in range(n_bins):
                    lo = starts[b, i]
                    hi = starts[b + 1, i]
                    if hi <= lo:
                        continue
                    num[ch, c, b] += vi * (pv[hi] - pv[lo])
                    cnt[ch, c, b] += mi * (pm[hi] - pm[lo])
    return num, cnt


# =============================================================================
# Cross-population accumulation
# =============================================================================


@numba.njit(cache=True, parallel=True)
def naive_outer_sums(
    xs: np.ndarray,
    ys: np.ndarray,
    pos: np.ndarray,
    ends: np.ndarray,
    edges: np.ndarray,
    chunk_starts: np.ndarray,
    chunk_stops: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Direct scan of sum_pairs xs[t, i] * ys[t, j] for every term t.

    Returns:
        Per-chunk term sums of shape (n_chunks, n_terms, n_bins) and
        marker-pair counts of shape (n_chunks, n_bins)
    """
    n_terms = xs.shape[0]
    n_bins = len(edges) - 1
    n_chunks = len(chunk_starts)
    out = np.zeros((n_chunks, n_terms, n_bins))
    pairs = np.zeros((n_chunks, n_bins))

    for ch in numba.prange(n_chunks):
        for i in range(chunk_starts[ch], chunk_stops[ch]):
            b = 0
            for j in range(i + 1, ends[i]):
                while b < n_bins and pos[j] >= pos[i] + edges[b + 1]:
                    b += 1
                if b == n_bins:
                    break
                if pos[j] < pos[i] + edges[0]:
                    continue
                for t in range(n_terms):
                    out[ch, t, b] += xs[t, i] * ys[t, j]
                pairs[ch, b] += 1.0
    return out, pairs


@numba.njit(cache=True, parallel=True)
def fast_outer_sums(
    xs: np.ndarray,
    ys: np.ndarray,
    chrom_index: np.ndarray,
    n_chrom: int,
    starts: np.ndarray,
) -> np.ndarray:
    """Prefix-sum version of naive_outer_sums.

    Returns:
        Term sums of shape (n_terms, n_chrom, n_bins)
    """
    n_terms, n_markers = xs.shape
    n_bins = starts.shape[0] - 1
    out = np.zeros((n_terms, n_chrom, n_bins))

    for t in numba.prange(n_terms):
        prefix = np.zeros(n_markers + 1)
        for j in range(n_markers):
            prefix[j + 1] = prefix[j] + ys[t, j]
        for i in range(n_markers):
            x = xs[t, i]
            if x == 0.0:
                continue
            c = chrom_index[i]
            for b in range(n_bins):
                lo = starts[b, i]
                hi = starts[b + 1, i]
                if hi <= lo:
                    continue
                out[t, c, b] += x * (prefix[hi] - prefix[lo])
    return out


# =============================================================================
# Unweighted LD in two populations (correlated-LD scan)
# =============================================================================


@numba.njit(cache=True)
def _pair_covariance(geno: np.ndarray, i: int, j: int) -> tuple[float, float]:
    """Covariance of two genotype columns over individuals called at both."""
    n = 0
    sx = 0.0
    sy = 0.0
    sxy = 0.0
    for k in range(geno.shape[0]):
        x = float(geno[k, i])
        y = float(geno[k, j])
        if x < 0 or y < 0:
            continue
        n += 1
        sx += x
        sy += y
        sxy += x * y
    if n < 2:
        return 0.0, 0.0
    return (sxy - sx * sy / n) / (n - 1), float(n)


@numba.njit(cache=True, parallel=True)
def ld_pair_moments(
    geno_a: np.ndarray,
    geno_b: np.ndarray,
    pos: np.ndarray,
    ends: np.ndarray,
    edges: np.ndarray,
    chunk_starts: np.ndarray,
    chunk_stops: np.ndarray,
) -> np.ndarray:
    """Moments of per-pair LD covariances in two populations.

    For every marker pair in a bin, the LD covariance ``za`` in population A
    and ``zb`` in population B are computed over called individuals. Pairs
    with fewer than two called individuals in either population are skipped.

    Returns:
        Array (n_chunks, n_bins, 6) holding the sums of
        1, za, zb, za*za, zb*zb and za*zb
    """
    n_bins = len(edges) - 1
    n_chunks = len(chunk_starts)
    out = np.zeros((n_chunks, n_bins, 6))

    for ch in numba.prange(n_chunks):
        for i in range(chunk_starts[ch], chunk_stops[ch]):
            b = 0
            for j in range(i + 1, ends[i]):
                while b < n_bins and pos[j] >= pos[i] + edges[b + 1]:
                    b += 1
                if b == n_bins:
                    break
                if pos[j] < pos[i] + edges[0]:
                    continue
                za, na = _pair_covariance(geno_a, i, j)
                zb, nb = _pair_covariance(geno_b, i, j)
                if na < 2.0 or nb < 2.0:
                    continue
                out[ch, b, 0] += 1.0
                out[ch, b, 1] += za
                out[ch, b, 2] += zb
                out[ch, b, 3] += za * za
                out[ch, b, 4] += zb * zb
                out[ch, b, 5] += za * zb
    return out
