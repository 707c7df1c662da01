# Copyright 2024 The HuggingFace Team. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Seeded Gaussian noise sources. Two generators seeded identically and asked for the same sequence of shapes produce
identical tensors.
"""

from abc import ABC, abstractmethod
from typing import List, Tuple, Union

import numpy as np
import torch


def _check_shape(shape: Union[Tuple[int, ...], List[int]]) -> Tuple[int, ...]:
    shape = tuple(int(dim) for dim in shape)
    if len(shape) == 0 or any(dim <= 0 for dim in shape):
        raise ValueError(f"`shape` must be a non-empty sequence of positive dimensions, but is {shape}.")
    return shape


class RandomGenerator(ABC):
    """
    Base class of the seeded noise sources consumed by the pipeline and the stochastic schedulers.

    Subclasses implement `_standard_normal(shape)`, returning a `float32` tensor of independent samples from
    `N(0, 1)` on the CPU.
    """

    def __init__(self, seed: int):
        self.seed = int(seed)

    def next_array(
        self, shape: Union[Tuple[int, ...], List[int]], mean: float = 0.0, stdev: float = 1.0
    ) -> torch.Tensor:
        """
        Draws the next tensor of independent Gaussian samples.

        Args:
            shape (`Tuple[int]`):
                The shape of the tensor. Every dimension must be positive.
            mean (`float`, defaults to 0.0):
                Mean of the distribution.
            stdev (`float`, defaults to 1.0):
                Standard deviation of the distribution.

        Returns:
            `torch.Tensor`: A `float32` CPU tensor of the requested shape.
        """
        shape = _check_shape(shape)
        sample = self._standard_normal(shape)
        if stdev != 1.0:
            sample = sample * stdev
        if mean != 0.0:
            sample = sample + mean
        return sample

    @abstractmethod
    def _standard_normal(self, shape: Tuple[int, ...]) -> torch.Tensor:
        ...

    @property
    def torch_generator(self) -> torch.Generator:
        """A `torch.Generator` for code paths that require one. Its stream is independent of `next_array`."""
        if not hasattr(self, "_torch_generator"):
            self._torch_generator = torch.Generator(device="cpu").manual_seed(self.seed)
        return self._torch_generator

    def __repr__(self):
        return f"{self.__class__.__name__}(seed={self.seed})"


class TorchRandomGenerator(RandomGenerator):
    """
    Noise drawn from a CPU `torch.Generator` seeded with `manual_seed(seed)`. The sequence matches `torch.randn` on
    the CPU for the same seed, which is the reference sequence most ports of Stable Diffusion reproduce.
    """

    def __init__(self, seed: int):
        super().__init__(seed)
        self._torch_generator = torch.Generator(device="cpu").manual_seed(self.seed)

    def _standard_normal(self, shape):
        return torch.randn(shape, generator=self._torch_generator, dtype=torch.float32)


class NumpyRandomGenerator(RandomGenerator):
    """
    Noise drawn from `numpy.random.RandomState(seed)`, i.e. MT19937 with the polar Box-Muller transform. The sequence
    matches the legacy NumPy sampler used by the original Stable Diffusion scripts.
    """

    def __init__(self, seed: int):
        super().__init__(seed)
        self._random_state = np.random.RandomState(self.seed)

    def _standard_normal(self, shape):
        sample = self._random_state.standard_normal(size=shape)
        return torch.from_numpy(sample.astype(np.float32))


GENERATOR_TYPES = {
    "torch": TorchRandomGenerator,
    "numpy": NumpyRandomGenerator,
}


def get_random_generator(seed: int, generator_type: str = "torch") -> RandomGenerator:
    """Returns a freshly seeded generator of the given type (`"torch"` or `"numpy"`)."""
    if generator_type not in GENERATOR_TYPES:
        raise ValueError(
            f"`generator_type` has to be one of {list(GENERATOR_TYPES.keys())}, but is {generator_type}."
        )
    return GENERATOR_TYPES[generator_type](seed)
