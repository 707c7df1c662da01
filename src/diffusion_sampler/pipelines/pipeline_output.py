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
from typing import List, Optional, Union

import numpy as np
import PIL.Image
import torch

from ..utils import BaseOutput


@dataclass
class LatentDiffusionPipelineOutput(BaseOutput):
    """
    Output class for [`LatentDiffusionPipeline`].

    Args:
        images (`List[PIL.Image.Image]`, `np.ndarray` or `torch.Tensor`):
            List of denoised PIL images of length `batch_size`, a NumPy array of shape `(batch_size, height, width,
            num_channels)` or a tensor of shape `(batch_size, num_channels, height, width)`. With
            `output_type="latent"` this is the final latent, not decoded.
        latents (`torch.Tensor`, *optional*):
            The final latent handed to the decoder.
    """

    images: Union[List[PIL.Image.Image], np.ndarray, torch.Tensor]
    latents: Optional[torch.Tensor] = None
