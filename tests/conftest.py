"""Shared simulated panels for the wldecay tests."""

import pytest

from wldecay.sim import simulate_admixture, simulate_unlinked


@pytest.fixture(scope="session")
def one_ref_sim():
    """200 admixed individuals, 2 chromosomes, admixture 5 generations ago."""
    return simulate_admixture(
        n_mixed=200,
        n_ref=50,
        n_chromosomes=2,
        chromosome_length_cm=100.0,
        marker_spacing_cm=0.2,
        generations=5.0,
        mixture_fraction=0.4,
        fst=0.3,
        n_references=1,
        seed=11,
    )


@pytest.fixture(scope="session")
def two_ref_sim():
    """Admixed population with both source panels, 4 chromosomes, 10 generations."""
    return simulate_admixture(
        n_mixed=200,
        n_ref=60,
        n_chromosomes=4,
        chromosome_length_cm=60.0,
        marker_spacing_cm=0.2,
        generations=10.0,
        mixture_fraction=0.5,
        fst=0.3,
        n_references=2,
        seed=7,
    )


@pytest.fixture(scope="session")
def unlinked_sim():
    """Population without LD and one unrelated reference."""
    return simulate_unlinked(
        n_mixed=100,
        n_ref=40,
        n_chromosomes=10,
        chromosome_length_cm=20.0,
        marker_spacing_cm=0.2,
        n_references=1,
        seed=3,
    )
