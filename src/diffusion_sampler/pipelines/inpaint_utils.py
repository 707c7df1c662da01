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
Inpainting helpers. Networks trained for inpainting receive the mask and the masked image latents as extra input
channels; every other network is steered by blending the source image back into the unmasked area after each step.
"""

from typing import Optional, Tuple

import torch
import torch.nn.functional as F

from ..utils import MissingInputsError, check_broadcastable


def prepare_mask_and_masked_image(image: torch.Tensor, mask: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Prepares a pair (mask, masked_image) to be consumed by the inpainting path.

    Args:
        image (`torch.Tensor`):
            The source image of shape `(batch_size, 3, height, width)` in [-1, 1].
        mask (`torch.Tensor`):
            The mask of shape `(batch_size, 1, height, width)` in [0, 1], 1 marks the area to regenerate.

    Returns:
        `Tuple[torch.Tensor, torch.Tensor]`: The mask and the image with the area to regenerate zeroed out, i.e.
        `image * (mask < 0.5)`.

    Raises:
        `ValueError`: if the mask values fall outside of [0, 1].
        `ShapeMismatchError`: if the mask does not broadcast to the image.
    """
    if mask.ndim == 2:
        mask = mask[None, None]
    elif mask.ndim == 3:
        mask = mask.unsqueeze(0) if mask.shape[0] == 1 else mask.unsqueeze(1)

    check_broadcastable("mask", (mask.shape[0], 1, *mask.shape[2:]), image.shape)

    if mask.min() < 0 or mask.max() > 1:
        raise ValueError("Mask should be in [0, 1] range")

    mask = mask.to(device=image.device, dtype=image.dtype)
    masked_image = image * (mask < 0.5)

    return mask, masked_image


def resize_mask(mask: torch.Tensor, height: int, width: int) -> torch.Tensor:
    """Resizes the mask to the latent resolution, keeping a single channel."""
    return F.interpolate(mask, size=(height, width))


def blend_masked_latents(
    latents: torch.Tensor, init_latents_proper: torch.Tensor, mask: torch.Tensor
) -> torch.Tensor:
    """
    Returns `(1 - mask) * init_latents_proper + mask * latents`. The single-channel mask is broadcast across the latent
    channels. A mask of zeros returns `init_latents_proper` and a mask of ones `latents`, exactly.
    """
    check_broadcastable("init_latents_proper", init_latents_proper.shape, latents.shape)
    check_broadcastable("mask", mask.shape, latents.shape)
    return (1 - mask) * init_latents_proper + mask * latents


class MaskedLatentBlender:
    r"""
    Blends the clean source latent back into the unmasked area after every scheduler step.

    The source latent is re-noised to the noise level of the *next* timestep of the schedule with the noise the
    generation was initialised with, and is left clean after the last step.

    Args:
        scheduler ([`SchedulerMixin`]):
            The scheduler of the current generation, its timesteps already set.
        image_latents (`torch.Tensor`, *optional*):
            The encoded source image.
        noise (`torch.Tensor`, *optional*):
            The unit Gaussian noise the generation was initialised with.
        mask (`torch.Tensor`, *optional*):
            The mask at latent resolution.
    """

    def __init__(
        self,
        scheduler,
        image_latents: Optional[torch.Tensor],
        noise: Optional[torch.Tensor],
        mask: Optional[torch.Tensor],
    ):
        self.scheduler = scheduler
        self.image_latents = image_latents
        self.noise = noise
        self.mask = mask

    def init_latents_proper(self, step_index: int) -> torch.Tensor:
        missing = [
            name
            for name, value in (("image_latents", self.image_latents), ("noise", self.noise), ("mask", self.mask))
            if value is None
        ]
        if missing:
            raise MissingInputsError(f"Blending the inpainted latents requires {', '.join(missing)}.")

        timesteps = self.scheduler.timesteps
        if step_index < len(timesteps) - 1:
            noise_timestep = timesteps[step_index + 1 : step_index + 2]
            return self.scheduler.add_noise(self.image_latents, self.noise, noise_timestep)
        return self.image_latents

    def __call__(self, latents: torch.Tensor, step_index: int) -> torch.Tensor:
        init_latents_proper = self.init_latents_proper(step_index)
        return blend_masked_latents(latents, init_latents_proper, self.mask)
