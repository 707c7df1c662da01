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

from .inpaint_utils import (
    MaskedLatentBlender,
    blend_masked_latents,
    prepare_mask_and_masked_image,
    resize_mask,
)
from .pipeline_latent_diffusion import LatentDiffusionPipeline
from .pipeline_output import LatentDiffusionPipelineOutput
from .pipeline_utils import ComputeConfig, DiffusionPipeline
from .sample_input import SampleInput
