"""
Conjoint Choice Panels

Typed records for a discrete-choice conjoint study: the attribute design, the
profiles shown to respondents, individual choice tasks, and the immutable
panel consumed by the estimators. Panels round-trip through a long-format
table with one row per (respondent, task, alternative).
"""

from __future__ import annotations

import itertools
import os
from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np
import numpy.typing as npt
import pandas as pd

PANEL_COLUMNS = ("resp", "task", "choice", "brand", "ad", "price")
DEFAULT_PRICES = tuple(float(p) for p in range(8, 33, 4))

_AD_TRUE = {"yes", "y", "true", "1"}
_AD_FALSE = {"no", "n", "false", "0"}


@dataclass(frozen=True)
class Profile:
    """A single alternative: brand level, ad-supported flag, and monthly price."""

    brand: str
    ad: bool
    price: float


@dataclass(frozen=True)
class AttributeDesign:
    """
    Attribute levels of the study and their dummy coding.

    Utility is linear in one dummy per non-reference brand, an ad dummy and the
    raw price, so the parameter vector has ``len(brands) + 1`` entries ordered
    as ``parameter_names``.

    Attributes:
        brands (tuple[str, ...]): Brand levels (N = Netflix, P = Prime, H = Hulu).
        reference_brand (str): Brand whose utility is normalised to zero.
        prices (tuple[float, ...]): Price grid offered in the study.
    """

    brands: tuple[str, ...] = ("N", "P", "H")
    reference_brand: str = "H"
    prices: tuple[float, ...] = DEFAULT_PRICES

    def __post_init__(self) -> None:
        brands = tuple(str(b) for b in self.brands)
        prices = tuple(float(p) for p in self.prices)
        if len(brands) < 2:
            raise ValueError(f"brands must contain >= 2 levels, got {len(brands)}")
        if len(set(brands)) != len(brands):
            raise ValueError(f"brands must be unique, got {brands}")
        if self.reference_brand not in brands:
            raise ValueError(
                f"reference_brand {self.reference_brand!r} is not one of {brands}"
            )
        if not prices:
            raise ValueError("prices must contain at least one level")
        object.__setattr__(self, "brands", brands)
        object.__setattr__(self, "prices", prices)

    @property
    def non_reference_brands(self) -> tuple[str, ...]:
        return tuple(b for b in self.brands if b != self.reference_brand)

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return tuple(f"brand_{b}" for b in self.non_reference_brands) + ("ad", "price")

    @property
    def num_parameters(self) -> int:
        return len(self.brands) + 1

    def profiles(self) -> tuple[Profile, ...]:
        """Full cross product of attribute levels (brand x ad x price)."""
        return tuple(
            Profile(brand, ad, price)
            for brand, ad, price in itertools.product(
                self.brands, (True, False), self.prices
            )
        )

    def encode(self, profile: Profile) -> npt.NDArray[np.float64]:
        """
        Covariate row for one profile.

        Raises:
            ValueError: If the profile's brand is not part of the design or
                its price is not finite.
        """
        if profile.brand not in self.brands:
            raise ValueError(
                f"Unknown brand {profile.brand!r}; expected one of {self.brands}"
            )
        price = float(profile.price)
        if not np.isfinite(price):
            raise ValueError(f"price must be finite, got {profile.price!r}")
        row = [1.0 if profile.brand == b else 0.0 for b in self.non_reference_brands]
        row.append(1.0 if profile.ad else 0.0)
        row.append(price)
        return np.asarray(row, dtype=np.float64)

    def encode_all(self, profiles: Iterable[Profile]) -> npt.NDArray[np.float64]:
        rows = [self.encode(p) for p in profiles]
        return np.asarray(rows, dtype=np.float64).reshape(len(rows), self.num_parameters)


@dataclass(frozen=True)
class ChoiceTask:
    """
    One respondent's answer to one choice task.

    ``chosen`` indexes into ``profiles``; storing the index rather than a flag
    per alternative makes "exactly one chosen" hold by construction.
    """

    respondent: int
    task: int
    profiles: tuple[Profile, ...]
    chosen: int

    def __post_init__(self) -> None:
        profiles = tuple(self.profiles)
        if not profiles:
            raise ValueError(
                f"Task (resp={self.respondent}, task={self.task}) offers no profiles"
            )
        chosen = int(self.chosen)
        if not 0 <= chosen < len(profiles):
            raise ValueError(
                f"chosen index {chosen} out of range [0, {len(profiles)}) for "
                f"task (resp={self.respondent}, task={self.task})"
            )
        object.__setattr__(self, "profiles", profiles)
        object.__setattr__(self, "chosen", chosen)

    @property
    def num_alternatives(self) -> int:
        return len(self.profiles)

    @property
    def choices(self) -> tuple[int, ...]:
        """Binary choice flags, one per alternative."""
        return tuple(int(j == self.chosen) for j in range(len(self.profiles)))

    @property
    def chosen_profile(self) -> Profile:
        return self.profiles[self.chosen]


@dataclass(frozen=True)
class ChoicePanel:
    """
    Immutable collection of choice tasks plus their cached design matrices.

    Attributes:
        tasks (tuple[ChoiceTask, ...]): Tasks in respondent/task order.
        design (AttributeDesign): Coding used to build the covariates.
        X (np.ndarray): Read-only covariates of shape (n_tasks, n_alternatives, K).
        chosen (np.ndarray): Read-only chosen-alternative index per task (n_tasks,).
    """

    tasks: tuple[ChoiceTask, ...]
    design: AttributeDesign = field(default_factory=AttributeDesign)
    X: npt.NDArray[np.float64] = field(init=False, repr=False, compare=False)
    chosen: npt.NDArray[np.int64] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        tasks = tuple(self.tasks)
        if not tasks:
            raise ValueError("ChoicePanel must contain at least one task")

        sizes = sorted({t.num_alternatives for t in tasks})
        if len(sizes) != 1:
            raise ValueError(
                f"All tasks must offer the same number of alternatives, got sizes {sizes}"
            )

        keys = [(t.respondent, t.task) for t in tasks]
        if len(set(keys)) != len(keys):
            raise ValueError("Each (respondent, task) pair must appear only once")

        # Profiles repeat heavily across tasks, so encode each distinct one once
        cache: dict[Profile, npt.NDArray[np.float64]] = {}
        rows = []
        for task in tasks:
            for profile in task.profiles:
                row = cache.get(profile)
                if row is None:
                    row = cache[profile] = self.design.encode(profile)
                rows.append(row)

        X = np.asarray(rows, dtype=np.float64).reshape(
            len(tasks), sizes[0], self.design.num_parameters
        )
        chosen = np.fromiter((t.chosen for t in tasks), dtype=np.int64, count=len(tasks))
        X.setflags(write=False)
        chosen.setflags(write=False)

        object.__setattr__(self, "tasks", tasks)
        object.__setattr__(self, "X", X)
        object.__setattr__(self, "chosen", chosen)

    @property
    def num_tasks(self) -> int:
        return len(self.tasks)

    @property
    def num_alternatives(self) -> int:
        return int(self.X.shape[1])

    @property
    def num_respondents(self) -> int:
        return len({t.respondent for t in self.tasks})

    def __len__(self) -> int:
        return len(self.tasks)

    def to_frame(self) -> pd.DataFrame:
        """Long-format table with columns ``resp, task, choice, brand, ad, price``."""
        records = [
            {
                "resp": t.respondent,
                "task": t.task,
                "choice": int(j == t.chosen),
                "brand": p.brand,
                "ad": "Yes" if p.ad else "No",
                "price": p.price,
            }
            for t in self.tasks
            for j, p in enumerate(t.profiles)
        ]
        return pd.DataFrame.from_records(records, columns=list(PANEL_COLUMNS))

    @classmethod
    def from_frame(
        cls, frame: pd.DataFrame, design: AttributeDesign | None = None
    ) -> "ChoicePanel":
        """
        Build a panel from a long-format table.

        Rows are grouped by (resp, task) in order of first appearance; the row
        order within a group gives the alternative order.

        Raises:
            ValueError: On missing columns or cells, a non-binary choice
                column, a task without exactly one chosen alternative,
                unparsable ad flags, unknown brands, non-finite prices, or
                tasks of unequal size.
        """
        missing = [c for c in PANEL_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"Panel frame is missing columns: {missing}")
        design = design or AttributeDesign()

        nulls = [c for c in PANEL_COLUMNS if frame[c].isna().any()]
        if nulls:
            raise ValueError(f"Panel frame has missing values in columns: {nulls}")

        if not frame["choice"].isin((0, 1)).all():
            raise ValueError("choice column must be binary (contain only 0 or 1).")

        counts = frame.groupby(["resp", "task"], sort=False)["choice"].sum()
        invalid = counts[counts != 1]
        if len(invalid) > 0:
            shown = list(invalid.index[:10])
            raise ValueError(
                "Each task must have exactly one chosen alternative. "
                f"Tasks (resp, task) with invalid choices: {shown}"
                + ("..." if len(invalid) > 10 else "")
            )

        ad = frame["ad"].map(_parse_ad)
        tasks = []
        for (resp, task), group in frame.groupby(["resp", "task"], sort=False):
            profiles = tuple(
                Profile(str(brand), bool(flag), float(price))
                for brand, flag, price in zip(
                    group["brand"], ad.loc[group.index], group["price"]
                )
            )
            chosen = int(np.flatnonzero(group["choice"].to_numpy() == 1)[0])
            tasks.append(ChoiceTask(int(resp), int(task), profiles, chosen))

        return cls(tuple(tasks), design)


def _parse_ad(value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _AD_TRUE:
            return True
        if token in _AD_FALSE:
            return False
    raise ValueError(f"Cannot interpret ad flag {value!r}; expected Yes/No or 0/1")


def read_panel(
    path: str | os.PathLike[str],
    design: AttributeDesign | None = None,
    **read_csv_kwargs: Any,
) -> ChoicePanel:
    """Load a panel from a delimited file with the ``PANEL_COLUMNS`` schema."""
    frame = pd.read_csv(path, **read_csv_kwargs)
    return ChoicePanel.from_frame(frame, design=design)


def write_panel(panel: ChoicePanel, path: str | os.PathLike[str]) -> None:
    panel.to_frame().to_csv(path, index=False)
