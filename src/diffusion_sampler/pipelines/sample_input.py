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

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import PIL.Image
import torch

from ..schedulers import SchedulerType


@dataclass(frozen=True)
class SampleInput:
    """
    The request of one generation. Read-only once constructed; [`LatentDiffusionPipeline.check_inputs`] validates it
    before any model runs.

    Args:
        prompt (`str`):
            The prompt to guide image generation.
        negative_prompt (`str`, defaults to `""`):
            The prompt to guide what to not include in image generation. Only used with classifier free guidance.
        init_image (`torch.Tensor`, `PIL.Image.Image` or `np.ndarray`, *optional*):
            Source image for image-to-image and inpainting. A tensor is expected as `(1, 3, height, width)` in
            [-1, 1], PIL images and arrays in [0, 1] are converted by the image processor.
        inpaint_mask (`torch.Tensor`, `PIL.Image.Image` or `np.ndarray`, *optional*):
            Inpainting mask of shape `(1, 1, height, width)` with values in [0, 1]; 1 marks the area to regenerate.
            Requires `init_image`.
        strength (`float`, *optional*):
            How far the source image is transformed, in [0, 1]. `1` ignores the image content, `0` returns it. The
            source image is only used when `strength` is set.
        width (`int`, defaults to 512), height (`int`, defaults to 512):
            Size of the generated image in pixels, multiples of the autoencoder scale factor.
        step_count (`int`, defaults to 50):
            Number of denoising steps of the full schedule, before `strength` truncation.
        guidance_scale (`float`, defaults to 7.5):
            Classifier free guidance weight, enabled when larger than 1.
        seed (`int`, defaults to 0):
            Seed of the random generator, the only source of randomness of a generation.
        scheduler (`str` or `SchedulerType`, defaults to `"ddim"`):
            Name of the scheduler, see [`SchedulerType`].
        original_step_count (`int`, *optional*):
            Size of the base schedule latent consistency models subsample from.
        guidance_rescale (`float`, defaults to 0.0):
            Rescale factor of the guided prediction, see [`rescale_noise_cfg`].
        generator_type (`str`, defaults to `"torch"`):
            `"torch"` or `"numpy"`, see [`get_random_generator`].
    """

    prompt: str = ""
    negative_prompt: str = ""
    init_image: Optional[Union[torch.Tensor, PIL.Image.Image, np.ndarray]] = None
    inpaint_mask: Optional[Union[torch.Tensor, PIL.Image.Image, np.ndarray]] = None
    strength: Optional[float] = None
    width: int = 512
    height: int = 512
    step_count: int = 50
    guidance_scale: float = 7.5
    seed: int = 0
    scheduler: Union[str, SchedulerType] = SchedulerType.DDIM
    original_step_count: Optional[int] = None
    guidance_rescale: float = 0.0
    generator_type: str = "torch"

    @property
    def is_image_to_image(self) -> bool:
        return self.init_image is not None and self.strength is not None

    @property
    def is_inpainting(self) -> bool:
        return self.is_image_to_image and self.inpaint_mask is not None
