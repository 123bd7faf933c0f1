"""Data structures handed over by the data-preparation step."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import block_diag

from metagrowth.exceptions import ConfigurationError

if TYPE_CHECKING:
    import pandas as pd


@dataclass
class GrowthDataStructure:
    """Hierarchical repeated-measurement data for one output type.

    Observations are the outputs of a growth simulator started at several
    initial ages. Each (initial age, output type) combination forms one
    group of repeated measurements sharing a residual correlation structure.

    Parameters
    ----------
    y : ndarray of shape (n_observations,)
        Observed responses (simulated estimates).
    initial_age_yr : ndarray of shape (n_observations,)
        Stand age at the start of the simulation that produced each value.
    time_since_beginning : ndarray of shape (n_observations,)
        Years elapsed since the start of that simulation.
    residual_covariance : ndarray of shape (n_observations, n_observations)
        Residual variance-covariance matrix aligned with the observations.
    output_type : str, default="Estimate"
        Name of the modelled output type.
    stratum_group : str, default="Stratum"
        Label of the stratum group the data belong to.
    group_keys : list of str, optional
        Group key per observation. Defaults to ``"<initialAge>_<outputType>"``.
    data : pandas.DataFrame, optional
        Source table the arrays were extracted from. Used to build the
        augmented copy returned after a fit.

    Raises
    ------
    ConfigurationError
        If the arrays are empty, of mismatched lengths, or if the covariance
        is not a square matrix matching the number of observations.
    """

    y: NDArray[np.float64]
    initial_age_yr: NDArray[np.float64]
    time_since_beginning: NDArray[np.float64]
    residual_covariance: NDArray[np.float64]
    output_type: str = "Estimate"
    stratum_group: str = "Stratum"
    group_keys: Optional[list[str]] = None
    data: Optional["pd.DataFrame"] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.output_type is None:
            raise ConfigurationError("output_type must be non null")
        if self.stratum_group is None:
            raise ConfigurationError("stratum_group must be non null")

        self.y = np.asarray(self.y, dtype=np.float64)
        self.initial_age_yr = np.asarray(self.initial_age_yr, dtype=np.float64)
        self.time_since_beginning = np.asarray(
            self.time_since_beginning, dtype=np.float64
        )
        self.residual_covariance = np.asarray(
            self.residual_covariance, dtype=np.float64
        )

        if self.y.ndim != 1:
            raise ConfigurationError(f"y must be 1D, got {self.y.ndim}D")
        n = self.y.shape[0]
        if n == 0:
            raise ConfigurationError("y cannot be empty")

        for name in ("initial_age_yr", "time_since_beginning"):
            values = getattr(self, name)
            if values.shape != (n,):
                raise ConfigurationError(
                    f"{name} has shape {values.shape}, expected ({n},)"
                )

        if self.residual_covariance.shape != (n, n):
            raise ConfigurationError(
                f"residual_covariance has shape {self.residual_covariance.shape}, "
                f"expected ({n}, {n}) to match the number of observations"
            )

        if self.group_keys is None:
            self.group_keys = [
                f"{_format_age(age)}_{self.output_type}" for age in self.initial_age_yr
            ]
        else:
            self.group_keys = [str(k) for k in self.group_keys]
            if len(self.group_keys) != n:
                raise ConfigurationError(
                    f"group_keys has {len(self.group_keys)} entries, expected {n}"
                )

        if self.data is not None and len(self.data) != n:
            raise ConfigurationError(
                f"data has {len(self.data)} rows, expected {n}"
            )

    @property
    def n_observations(self) -> int:
        """Number of observations."""
        return self.y.shape[0]

    @property
    def age_yr(self) -> NDArray[np.float64]:
        """Stand age at each observation."""
        return self.initial_age_yr + self.time_since_beginning

    def group_indices(self) -> dict[str, list[int]]:
        """Partition the observations into groups.

        Returns
        -------
        dict
            Group key mapped to row indices, in order of first appearance.
        """
        groups: dict[str, list[int]] = {}
        for i, key in enumerate(self.group_keys):
            groups.setdefault(key, []).append(i)
        return groups

    def to_dataframe(self) -> "pd.DataFrame":
        """Return a copy of the source table, or one built from the arrays."""
        import pandas as pd

        if self.data is not None:
            return self.data.reset_index(drop=True).copy()

        return pd.DataFrame(
            {
                "initialAgeYr": self.initial_age_yr,
                "timeSinceInitialDateYr": self.time_since_beginning,
                "OutputType": self.output_type,
                "Estimate": self.y,
            }
        )

    @classmethod
    def from_dataframe(
        cls,
        df: "pd.DataFrame",
        covariance: NDArray[np.float64] | Mapping[float, NDArray[np.float64]],
        output_type: str,
        stratum_group: str = "Stratum",
        response: str = "Estimate",
        initial_age: str = "initialAgeYr",
        time_since_beginning: str = "timeSinceInitialDateYr",
        output_type_field: str = "OutputType",
    ) -> "GrowthDataStructure":
        """Extract one output type from a table of simulation results.

        Parameters
        ----------
        df : pandas.DataFrame
            Simulation results for all initial ages and output types.
        covariance : ndarray or mapping
            Either the full residual covariance aligned with the selected rows
            (after sorting by initial age), or a mapping from initial age to
            the covariance of that simulation's rows. In the latter case the
            matrices are assembled block-diagonally in increasing age order.
        output_type : str
            Output type to model.
        stratum_group : str, default="Stratum"
            Label of the stratum group.
        response, initial_age, time_since_beginning, output_type_field : str
            Column names.

        Returns
        -------
        GrowthDataStructure

        Raises
        ------
        ConfigurationError
            If a column is missing, the output type is not part of the table,
            or the covariance blocks do not match the rows.
        """
        for column in (response, initial_age, time_since_beginning, output_type_field):
            if column not in df.columns:
                raise ConfigurationError(f"Column {column!r} is missing from the data")

        if output_type is None:
            raise ConfigurationError("output_type must be non null")

        possible = set(df[output_type_field].unique())
        if output_type not in possible:
            raise ConfigurationError(
                f"The output type {output_type!r} is not part of the dataset"
            )

        selected = df[df[output_type_field] == output_type]
        selected = selected.sort_values(initial_age, kind="stable").reset_index(
            drop=True
        )

        if isinstance(covariance, Mapping):
            blocks = []
            for age, rows in selected.groupby(initial_age, sort=True):
                if age not in covariance:
                    raise ConfigurationError(
                        f"No covariance matrix supplied for initial age {age}"
                    )
                block = np.atleast_2d(np.asarray(covariance[age], dtype=np.float64))
                if block.shape != (len(rows), len(rows)):
                    raise ConfigurationError(
                        f"Covariance for initial age {age} has shape {block.shape}, "
                        f"expected ({len(rows)}, {len(rows)})"
                    )
                blocks.append(block)
            full_covariance = block_diag(*blocks)
        else:
            full_covariance = np.asarray(covariance, dtype=np.float64)

        return cls(
            y=selected[response].to_numpy(dtype=np.float64),
            initial_age_yr=selected[initial_age].to_numpy(dtype=np.float64),
            time_since_beginning=selected[time_since_beginning].to_numpy(
                dtype=np.float64
            ),
            residual_covariance=full_covariance,
            output_type=output_type,
            stratum_group=stratum_group,
            data=selected,
        )


def _format_age(age: float) -> str:
    return str(int(age)) if float(age).is_integer() else str(age)
