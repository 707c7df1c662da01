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
Spatial conditioning of the noise-prediction network. ControlNets run at every step on the current model input,
T2I-Adapters run once per generation on their conditioning image. Both produce a mapping from an injection point of
the network (e.g. `"down_block_0"`, `"mid_block"`) to a residual tensor that is added there.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import torch

from ..utils import ShapeMismatchError, logging
from .modeling_utils import ResourceLifecycleMixin


logger = logging.get_logger(__name__)  # pylint: disable=invalid-name


class ConditioningKind(str, Enum):
    CONTROLNET = "controlnet"
    T2I_ADAPTER = "t2i_adapter"


@dataclass
class ConditioningInput:
    """
    A conditioning module together with its conditioning image and weight.

    Args:
        model (`Callable`):
            A ControlNet, called as `model(sample, timestep, encoder_hidden_states=..., controlnet_cond=...,
            conditioning_scale=...)`, or a T2I-Adapter, called as `model(conditioning_image)`. Both return a
            `Dict[str, torch.Tensor]` of residuals.
        conditioning_image (`torch.Tensor`):
            The conditioning image, e.g. an edge map or a depth map, of shape `(batch_size, channels, height, width)`.
        conditioning_scale (`float`, defaults to 1.0):
            Weight of the residuals. ControlNets receive it as `conditioning_scale`, adapter outputs are multiplied by
            it.
        kind (`str`, defaults to `"controlnet"`):
            Either `"controlnet"` or `"t2i_adapter"`.
    """

    model: Callable
    conditioning_image: torch.Tensor
    conditioning_scale: float = 1.0
    kind: Union[str, ConditioningKind] = ConditioningKind.CONTROLNET

    def __post_init__(self):
        try:
            self.kind = ConditioningKind(self.kind)
        except ValueError:
            raise ValueError(
                f"`kind` has to be one of {[member.value for member in ConditioningKind]}, but is {self.kind}."
            ) from None

    @property
    def hidden_size(self) -> Optional[int]:
        """The cross-attention size the module was trained against, `None` if the model does not declare one."""
        config = getattr(self.model, "config", None)
        hidden_size = getattr(config, "hidden_size", None) if config is not None else None
        if hidden_size is None:
            hidden_size = getattr(self.model, "hidden_size", None)
        return hidden_size

    def compute_residuals(
        self,
        sample: Optional[torch.Tensor] = None,
        timestep: Optional[torch.Tensor] = None,
        encoder_hidden_states: Optional[torch.Tensor] = None,
        conditioning_image: Optional[torch.Tensor] = None,
    ) -> Dict[str, torch.Tensor]:
        conditioning_image = conditioning_image if conditioning_image is not None else self.conditioning_image
        if isinstance(self.model, ResourceLifecycleMixin):
            self.model.load_resources()

        if self.kind == ConditioningKind.T2I_ADAPTER:
            residuals = self.model(conditioning_image)
            return {key: value * self.conditioning_scale for key, value in residuals.items()}

        return dict(
            self.model(
                sample,
                timestep,
                encoder_hidden_states=encoder_hidden_states,
                controlnet_cond=conditioning_image,
                conditioning_scale=self.conditioning_scale,
            )
        )


def _expand_to_batch(tensor: torch.Tensor, batch_size: int, name: str) -> torch.Tensor:
    if tensor.shape[0] == batch_size:
        return tensor
    if batch_size % tensor.shape[0] != 0:
        raise ShapeMismatchError(
            f"`{name}` has a batch size of {tensor.shape[0]} which does not divide the batch size {batch_size}."
        )
    repeat_dims = [batch_size // tensor.shape[0]] + [1] * (tensor.ndim - 1)
    return tensor.repeat(*repeat_dims)


def _accumulate(merged: Dict[str, torch.Tensor], residuals: Dict[str, torch.Tensor]) -> None:
    for key, value in residuals.items():
        if key in merged:
            if merged[key].shape != value.shape:
                raise ShapeMismatchError(
                    f"Residuals for `{key}` have shapes {tuple(merged[key].shape)} and {tuple(value.shape)} and"
                    " cannot be summed."
                )
            merged[key] = merged[key] + value
        else:
            merged[key] = value


class MultiConditioning:
    r"""
    Merges the residuals of several ControlNets and T2I-Adapters into one mapping per denoising step.

    Residuals of several modules targeting the same injection point are summed in configuration order. When a
    ControlNet and an adapter target the same injection point the ControlNet residual is kept and the adapter residual
    is dropped; otherwise the two mappings are united.

    Args:
        inputs (`List[ConditioningInput]`, *optional*):
            The conditioning modules, in configuration order.
        parallel (`bool`, defaults to `False`):
            Evaluate the ControlNets of a step concurrently. The merge order does not depend on completion order.
    """

    def __init__(self, inputs: Optional[List[ConditioningInput]] = None, parallel: bool = False):
        self.inputs = list(inputs or [])
        self.parallel = parallel
        self._adapter_residuals = None

    @property
    def controlnets(self) -> List[ConditioningInput]:
        return [c for c in self.inputs if c.kind == ConditioningKind.CONTROLNET]

    @property
    def adapters(self) -> List[ConditioningInput]:
        return [c for c in self.inputs if c.kind == ConditioningKind.T2I_ADAPTER]

    def __len__(self):
        return len(self.inputs)

    def prepare(
        self,
        batch_size: int = 1,
        do_classifier_free_guidance: bool = False,
        device: Optional[torch.device] = None,
        dtype: Optional[torch.dtype] = None,
    ) -> Dict[str, torch.Tensor]:
        """
        Runs every adapter once and caches the summed, scaled residuals for the current generation. With classifier
        free guidance the residuals are duplicated along the batch axis to match the `[uncond; cond]` model input.
        """
        merged = {}
        for adapter in self.adapters:
            image = adapter.conditioning_image.to(device=device, dtype=dtype)
            _accumulate(merged, adapter.compute_residuals(conditioning_image=image))

        for key, value in merged.items():
            value = _expand_to_batch(value, batch_size, f"adapter residual {key}")
            if do_classifier_free_guidance:
                value = torch.cat([value] * 2)
            merged[key] = value

        self._adapter_residuals = merged
        return merged

    def _controlnet_residuals(self, controlnet, sample, timestep, encoder_hidden_states):
        image = controlnet.conditioning_image.to(device=sample.device, dtype=sample.dtype)
        image = _expand_to_batch(image, sample.shape[0], "conditioning_image")
        return controlnet.compute_residuals(sample, timestep, encoder_hidden_states, conditioning_image=image)

    def compute_residuals(
        self,
        sample: torch.Tensor,
        timestep: Union[torch.Tensor, float, int],
        encoder_hidden_states: Optional[torch.Tensor] = None,
    ) -> Dict[str, torch.Tensor]:
        """
        Returns the merged residuals for one denoising step.

        Args:
            sample (`torch.Tensor`):
                The noise-prediction network input of this step, i.e. dual-batched, scaled and, for inpainting
                networks, concatenated with the mask channels.
            timestep (`torch.Tensor` or `float` or `int`):
                The current timestep.
            encoder_hidden_states (`torch.Tensor`, *optional*):
                The prompt embeddings.

        Returns:
            `Dict[str, torch.Tensor]`: The residual per injection point, empty when no module is configured.
        """
        controlnets = self.controlnets
        if self.parallel and len(controlnets) > 1:
            with ThreadPoolExecutor(max_workers=len(controlnets)) as executor:
                results = list(
                    executor.map(
                        lambda controlnet: self._controlnet_residuals(
                            controlnet, sample, timestep, encoder_hidden_states
                        ),
                        controlnets,
                    )
                )
        else:
            results = [
                self._controlnet_residuals(controlnet, sample, timestep, encoder_hidden_states)
                for controlnet in controlnets
            ]

        merged = {}
        for residuals in results:
            _accumulate(merged, residuals)

        if self._adapter_residuals is None and self.adapters:
            self.prepare(batch_size=sample.shape[0], device=sample.device, dtype=sample.dtype)

        for key, value in (self._adapter_residuals or {}).items():
            # first writer wins
            if key not in merged:
                merged[key] = value

        return merged

    def reset(self) -> None:
        """Drops the cached adapter residuals of the previous generation."""
        self._adapter_residuals = None

    def unload_resources(self) -> None:
        for conditioning in self.inputs:
            if isinstance(conditioning.model, ResourceLifecycleMixin):
                conditioning.model.unload_resources()
