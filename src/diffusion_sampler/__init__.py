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

__version__ = "0.1.0.dev0"

from .configuration_utils import ConfigMixin, FrozenDict, register_to_config
from .guiders import BaseGuidance, ClassifierFreeGuidance, GuiderOutput, perform_guidance, rescale_noise_cfg
from .image_processor import PipelineImageInput, VaeImageProcessor
from .models import ConditioningInput, ConditioningKind, ModelMixin, MultiConditioning, ResourceLifecycleMixin
from .pipelines import (
    ComputeConfig,
    DiffusionPipeline,
    LatentDiffusionPipeline,
    LatentDiffusionPipelineOutput,
    MaskedLatentBlender,
    SampleInput,
    blend_masked_latents,
    prepare_mask_and_masked_image,
    resize_mask,
)
from .schedulers import (
    CompatibleSchedulers,
    DDIMScheduler,
    DPMSolverMultistepScheduler,
    EulerAncestralDiscreteScheduler,
    EulerDiscreteScheduler,
    LCMScheduler,
    SchedulerMixin,
    SchedulerOutput,
    SchedulerType,
    get_scheduler_class,
)
from .utils import (
    DiffusionSamplerError,
    EncoderMissingError,
    MissingInputsError,
    NumpyRandomGenerator,
    RandomGenerator,
    ShapeMismatchError,
    TorchRandomGenerator,
    get_random_generator,
    logging,
    randn_tensor,
)
