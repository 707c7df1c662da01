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
PyTorch utilities: Utilities related to PyTorch
"""

from typing import List, Optional, Tuple, Union

import torch

from . import logging
from .random_generator import RandomGenerator


logger = logging.get_logger(__name__)  # pylint: disable=invalid-name


def randn_tensor(
    shape: Union[Tuple, List],
    generator: Optional[Union[RandomGenerator, "torch.Generator"]] = None,
    device: Optional[Union[str, "torch.device"]] = None,
    dtype: Optional["torch.dtype"] = None,
    layout: Optional["torch.layout"] = None,
    mean: float = 0.0,
    stdev: float = 1.0,
):
    """A helper function to create random tensors on the desired `device` with the desired `dtype`. The generator may
    be a [`~utils.RandomGenerator`] or a `torch.Generator`. If a CPU generator is passed, the tensor is always created
    on the CPU and then moved to `device`.
    """
    # device on which tensor is created defaults to device
    if isinstance(device, str):
        device = torch.device(device)
    device = device or torch.device("cpu")

    if isinstance(generator, RandomGenerator):
        latents = generator.next_array(tuple(shape), mean=mean, stdev=stdev)
        return latents.to(device=device, dtype=dtype or latents.dtype)

    rand_device = device
    layout = layout or torch.strided

    if generator is not None:
        gen_device_type = generator.device.type
        if gen_device_type != device.type and gen_device_type == "cpu":
            rand_device = "cpu"
            if device.type != "mps":
                logger.info(
                    f"The passed generator was created on 'cpu' even though a tensor on {device} was expected."
                    f" Tensors will be created on 'cpu' and then moved to {device}. Note that one can probably"
                    f" slightly speed up this function by passing a generator that was created on the {device} device."
                )
        elif gen_device_type != device.type and gen_device_type == "cuda":
            raise ValueError(f"Cannot generate a {device} tensor from a generator of type {gen_device_type}.")

    latents = torch.randn(shape, generator=generator, device=rand_device, dtype=dtype, layout=layout).to(device)
    if stdev != 1.0:
        latents = latents * stdev
    if mean != 0.0:
        latents = latents + mean

    return latents

