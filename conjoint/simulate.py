"""
Conjoint Data Simulation

Generates synthetic choice panels following the Random Utility Maximization (RUM)
principle: each respondent sees a random set of profiles per task and picks the
one with the highest utility after Gumbel noise is added.
Vectorized across all tasks.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import numpy.typing as npt

from .panel import AttributeDesign, ChoicePanel, ChoiceTask

logger = logging.getLogger(__name__)

# Part-worths used in the streaming-service study: Netflix, Prime, ads, price
DEFAULT_TRUE_BETA = (1.0, 0.5, -0.8, -0.1)


def simulate_panel(
    seed: int | None,
    true_beta: Sequence[float] | npt.NDArray[np.float64] | None = None,
    *,
    n_respondents: int = 100,
    n_tasks: int = 10,
    n_alternatives: int = 3,
    design: AttributeDesign | None = None,
    rng: np.random.Generator | None = None,
) -> ChoicePanel:
    """
    Simulate a conjoint choice panel.

    The simulation process:
    1. For every respondent and task, draws ``n_alternatives`` distinct profiles
       from the full attribute cross product
    2. Computes deterministic utilities V = X @ beta
    3. Adds standard Gumbel noise to create realized utilities U = V + epsilon
    4. Marks the alternative with the largest U as chosen (first index on ties)

    Args:
        seed (int | None): Random seed. Required; may be None only when rng is given.
        true_beta (array-like, optional): Ground-truth part-worths ordered as
            ``design.parameter_names``. Defaults to DEFAULT_TRUE_BETA.
        n_respondents (int): Number of respondents.
        n_tasks (int): Choice tasks per respondent.
        n_alternatives (int): Profiles shown per task.
        design (AttributeDesign, optional): Attribute levels; defaults to the
            three-brand streaming design.
        rng (np.random.Generator, optional): Use an existing RNG instead of seed.

    Returns:
        ChoicePanel: Tasks ordered by respondent, then task.

    Raises:
        ValueError: If counts are invalid, more alternatives are requested than
            distinct profiles exist, or true_beta has the wrong size or is not finite.
    """
    design = design or AttributeDesign()
    if n_respondents < 1:
        raise ValueError(f"n_respondents must be >= 1, got {n_respondents}")
    if n_tasks < 1:
        raise ValueError(f"n_tasks must be >= 1, got {n_tasks}")
    if n_alternatives < 1:
        raise ValueError(f"n_alternatives must be >= 1, got {n_alternatives}")

    profiles = design.profiles()
    if n_alternatives > len(profiles):
        raise ValueError(
            f"n_alternatives must be <= {len(profiles)} distinct profiles, "
            f"got {n_alternatives}"
        )

    beta = np.asarray(
        DEFAULT_TRUE_BETA if true_beta is None else true_beta, dtype=np.float64
    )
    if beta.shape != (design.num_parameters,):
        raise ValueError(
            f"true_beta must have size {design.num_parameters}, got {beta.size}"
        )
    if not np.all(np.isfinite(beta)):
        raise ValueError("true_beta must be finite")

    if rng is None:
        if seed is None:
            raise ValueError("seed is required when no rng is supplied")
        rng = np.random.default_rng(seed)

    n_obs = n_respondents * n_tasks
    profile_X = design.encode_all(profiles)

    # Sample without replacement per task: rank uniform keys, keep the first J
    keys = rng.random((n_obs, len(profiles)))
    shown = np.argsort(keys, axis=1)[:, :n_alternatives]

    # Deterministic utility (n_obs, J)
    V = profile_X[shown] @ beta

    # Add Gumbel Noise
    epsilon = rng.gumbel(loc=0.0, scale=1.0, size=(n_obs, n_alternatives))
    U = V + epsilon

    # np.argmax returns the first maximal index, which is the tie-break rule
    chosen = np.argmax(U, axis=1)

    tasks = tuple(
        ChoiceTask(
            respondent=i // n_tasks + 1,
            task=i % n_tasks + 1,
            profiles=tuple(profiles[k] for k in shown[i]),
            chosen=int(chosen[i]),
        )
        for i in range(n_obs)
    )
    logger.debug(
        "Simulated %d tasks (%d respondents x %d tasks x %d alternatives)",
        n_obs,
        n_respondents,
        n_tasks,
        n_alternatives,
    )
    return ChoicePanel(tasks, design)
