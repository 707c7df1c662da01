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

import torch

from ..configuration_utils import register_to_config
from .guider_utils import BaseGuidance, GuiderOutput, rescale_noise_cfg, split_guidance_batch


def perform_guidance(noise_pred: torch.Tensor, guidance_scale: float) -> torch.Tensor:
    """
    Combines a dual-batched prediction `[uncond; cond]` into `uncond + guidance_scale * (cond - uncond)`.

    `torch.lerp` is exact at both ends: `guidance_scale=0` returns the unconditional half and `guidance_scale=1` the
    conditional half, bit for bit.

    Raises:
        `ShapeMismatchError`: if the batch size is odd.
    """
    noise_pred_uncond, noise_pred_cond = split_guidance_batch(noise_pred)
    return torch.lerp(noise_pred_uncond, noise_pred_cond, guidance_scale)


class ClassifierFreeGuidance(BaseGuidance):
    """
    Implements Classifier-Free Guidance (CFG) for diffusion models.

    Reference: https://huggingface.co/papers/2207.12598

    The unconditional prediction is moved toward the conditional one:
    ```
    x_pred = x_uncond + guidance_scale * (x_cond - x_uncond)
    ```

    Guidance is active unless `guidance_scale == 1`, where the combination reduces to the conditional prediction. A
    scale of `0` returns the unconditional prediction and scales in `(0, 1)` blend the two. The decision is fixed for a
    run: the pipeline dual-batches its inputs only when [`~ClassifierFreeGuidance.do_classifier_free_guidance`] is
    `True`, and the guider is the identity otherwise.

    Args:
        guidance_scale (`float`, defaults to `7.5`):
            CFG scale. Higher values = stronger prompt conditioning but may reduce quality. Typical range: 1.0-20.0.
        guidance_rescale (`float`, defaults to `0.0`):
            Rescaling factor to prevent overexposure from high guidance scales. Based on [Common Diffusion Noise
            Schedules and Sample Steps are Flawed](https://huggingface.co/papers/2305.08891). Range: 0.0 (no rescaling)
            to 1.0 (full rescaling).
    """

    @register_to_config
    def __init__(self, guidance_scale: float = 7.5, guidance_rescale: float = 0.0):
        if guidance_scale < 0:
            raise ValueError(f"`guidance_scale` has to be non-negative but is {guidance_scale}.")
        self.guidance_scale = guidance_scale
        self.guidance_rescale = guidance_rescale

    @property
    def do_classifier_free_guidance(self) -> bool:
        return self.guidance_scale != 1.0

    @property
    def num_conditions(self) -> int:
        return 2 if self.do_classifier_free_guidance else 1

    def forward(self, noise_pred: torch.Tensor) -> GuiderOutput:
        if not self.do_classifier_free_guidance:
            return GuiderOutput(pred=noise_pred, pred_cond=noise_pred)

        pred_uncond, pred_cond = split_guidance_batch(noise_pred)
        pred = torch.lerp(pred_uncond, pred_cond, self.guidance_scale)

        if self.guidance_rescale > 0.0:
            pred = rescale_noise_cfg(pred, pred_cond, self.guidance_rescale)

        return GuiderOutput(pred=pred, pred_cond=pred_cond, pred_uncond=pred_uncond)
