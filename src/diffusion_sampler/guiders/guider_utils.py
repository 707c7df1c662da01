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

import os
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import torch

from ..configuration_utils import ConfigMixin
from ..utils import GUIDER_CONFIG_NAME, BaseOutput, ShapeMismatchError, get_logger


logger = get_logger(__name__)  # pylint: disable=invalid-name


@dataclass
class GuiderOutput(BaseOutput):
    """
    Output of a guidance technique.

    Args:
        pred (`torch.Tensor`):
            The guided prediction handed to the scheduler.
        pred_cond (`torch.Tensor`, *optional*):
            The conditional half of the prediction.
        pred_uncond (`torch.Tensor`, *optional*):
            The unconditional half of the prediction, `None` when guidance is disabled.
    """

    pred: torch.Tensor
    pred_cond: Optional[torch.Tensor] = None
    pred_uncond: Optional[torch.Tensor] = None


def split_guidance_batch(noise_pred: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """Splits a dual-batched prediction `[uncond; cond]` into its two halves."""
    if noise_pred.shape[0] % 2 != 0:
        raise ShapeMismatchError(
            f"Classifier-free guidance expects a batch of `[uncond; cond]` predictions, but the batch size is"
            f" {noise_pred.shape[0]}."
        )
    noise_pred_uncond, noise_pred_cond = noise_pred.chunk(2)
    return noise_pred_uncond, noise_pred_cond


def rescale_noise_cfg(noise_cfg, noise_pred_text, guidance_rescale=0.0):
    r"""
    Rescales `noise_cfg` tensor based on `guidance_rescale` to improve image quality and fix overexposure. Based on
    Section 3.4 from [Common Diffusion Noise Schedules and Sample Steps are
    Flawed](https://huggingface.co/papers/2305.08891).

    Args:
        noise_cfg (`torch.Tensor`):
            The predicted noise tensor for the guided diffusion process.
        noise_pred_text (`torch.Tensor`):
            The predicted noise tensor for the text-guided diffusion process.
        guidance_rescale (`float`, *optional*, defaults to 0.0):
            A rescale factor applied to the noise predictions.
    Returns:
        noise_cfg (`torch.Tensor`): The rescaled noise prediction tensor.
    """
    std_text = noise_pred_text.std(dim=list(range(1, noise_pred_text.ndim)), keepdim=True)
    std_cfg = noise_cfg.std(dim=list(range(1, noise_cfg.ndim)), keepdim=True)
    # rescale the results from guidance (fixes overexposure)
    noise_pred_rescaled = noise_cfg * (std_text / std_cfg)
    # mix with the original results from guidance by factor guidance_rescale to avoid "plain looking" images
    noise_cfg = guidance_rescale * noise_pred_rescaled + (1 - guidance_rescale) * noise_cfg
    return noise_cfg


class BaseGuidance(ConfigMixin):
    r"""Base class providing the skeleton for implementing guidance techniques."""

    config_name = GUIDER_CONFIG_NAME

    def new(self, **kwargs):
        """
        Creates a copy of this guider instance, optionally with modified configuration parameters.

        Example:
            ```python
            guider = ClassifierFreeGuidance(guidance_scale=3.5)
            new_guider = guider.new(guidance_scale=5)
            ```
        """
        return self.__class__.from_config(self.config, **kwargs)

    @classmethod
    def from_pretrained(
        cls,
        pretrained_model_name_or_path: Optional[Union[str, os.PathLike]] = None,
        subfolder: Optional[str] = None,
        return_unused_kwargs=False,
        **kwargs,
    ):
        r"""
        Instantiate a guider from a pre-defined JSON configuration file in a local directory or Hub repository.

        Parameters:
            pretrained_model_name_or_path (`str` or `os.PathLike`, *optional*):
                A repo id on the Hub or a path to a *directory* containing the guider configuration saved with
                [`~BaseGuidance.save_pretrained`].
            subfolder (`str`, *optional*):
                The subfolder location of a model file within a larger model repository on the Hub or locally.
            return_unused_kwargs (`bool`, *optional*, defaults to `False`):
                Whether kwargs that are not consumed by the Python class should be returned or not.
        """
        config, kwargs = cls.load_config(
            pretrained_model_name_or_path=pretrained_model_name_or_path,
            subfolder=subfolder,
            return_unused_kwargs=True,
            **kwargs,
        )
        return cls.from_config(config, return_unused_kwargs=return_unused_kwargs, **kwargs)

    def save_pretrained(self, save_directory: Union[str, os.PathLike], **kwargs):
        """
        Save a guider configuration object to a directory so that it can be reloaded using the
        [`~BaseGuidance.from_pretrained`] class method.
        """
        self.save_config(save_directory=save_directory, **kwargs)

    def __call__(self, noise_pred: torch.Tensor) -> torch.Tensor:
        return self.forward(noise_pred).pred

    def forward(self, *args, **kwargs) -> GuiderOutput:
        raise NotImplementedError("BaseGuidance::forward must be implemented in subclasses.")

    @property
    def num_conditions(self) -> int:
        raise NotImplementedError("BaseGuidance::num_conditions must be implemented in subclasses.")
