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
import os

from huggingface_hub.constants import HF_HOME


CONFIG_NAME = "config.json"
SCHEDULER_CONFIG_NAME = "scheduler_config.json"
GUIDER_CONFIG_NAME = "guider_config.json"
DIFFUSION_SAMPLER_CACHE = os.getenv("DIFFUSION_SAMPLER_CACHE", os.path.join(HF_HOME, "diffusion_sampler"))

# number of latent channels produced by the stable diffusion family of autoencoders
DEFAULT_LATENT_CHANNELS = 4
# spatial downscale factor between pixel space and latent space
DEFAULT_VAE_SCALE_FACTOR = 8
