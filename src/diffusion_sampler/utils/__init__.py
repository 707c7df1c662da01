# Copyright 2024 The HuggingFace Inc. team. All rights reserved.
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


from .constants import (
    CONFIG_NAME,
    DEFAULT_LATENT_CHANNELS,
    DEFAULT_VAE_SCALE_FACTOR,
    DIFFUSION_SAMPLER_CACHE,
    GUIDER_CONFIG_NAME,
    SCHEDULER_CONFIG_NAME,
)
from .errors import (
    DiffusionSamplerError,
    EncoderMissingError,
    MissingInputsError,
    ShapeMismatchError,
    check_broadcastable,
    check_concatenable,
)
from .logging import get_logger
from .outputs import BaseOutput, is_tensor
from .random_generator import (
    NumpyRandomGenerator,
    RandomGenerator,
    TorchRandomGenerator,
    get_random_generator,
)
from .torch_utils import randn_tensor


logger = get_logger(__name__)
