"""Type definitions for the metagrowth package."""

from typing import Union

import numpy as np

# Seeds accepted by numpy.random.default_rng
SeedLike = Union[int, np.random.SeedSequence, None]
