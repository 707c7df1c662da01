# coding=utf-8
# Copyright 2024 The HuggingFace Inc. team.
# Copyright (c) 2022, NVIDIA CORPORATION.  All rights reserved.
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

import itertools
from typing import Any, Optional, Union

import torch

from ..utils import CONFIG_NAME, logging


logger = logging.get_logger(__name__)  # pylint: disable=invalid-name


def get_parameter_device(parameter: torch.nn.Module) -> torch.device:
    parameters_and_buffers = itertools.chain(parameter.parameters(), parameter.buffers())
    for tensor in parameters_and_buffers:
        return tensor.device
    return torch.device("cpu")


def get_parameter_dtype(parameter: torch.nn.Module) -> torch.dtype:
    """
    Returns the first found floating dtype in parameters if there is one, otherwise returns the last dtype it found.
    """
    last_dtype = None
    for param in parameter.parameters():
        last_dtype = param.dtype
        if param.is_floating_point():
            return param.dtype

    for buffer in parameter.buffers():
        last_dtype = buffer.dtype
        if buffer.is_floating_point():
            return buffer.dtype

    return last_dtype if last_dtype is not None else torch.float32


class ResourceLifecycleMixin:
    r"""
    Explicit load/unload interface for components holding heavy resources (weights, compiled graphs, sessions).

    The pipeline calls [`~ResourceLifecycleMixin.load_resources`] before it uses a component and, when running with
    `reduce_memory=True`, [`~ResourceLifecycleMixin.unload_resources`] once the component is no longer needed for the
    current generation. Both calls are idempotent. Subclasses implement `_load_resources` and `_unload_resources`.
    """

    _is_loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._is_loaded

    def load_resources(self) -> None:
        if self._is_loaded:
            return
        logger.debug(f"Loading resources of {self.__class__.__name__}.")
        self._load_resources()
        self._is_loaded = True

    def unload_resources(self) -> None:
        if not self._is_loaded:
            return
        logger.debug(f"Unloading resources of {self.__class__.__name__}.")
        self._unload_resources()
        self._is_loaded = False

    def _load_resources(self) -> None:
        pass

    def _unload_resources(self) -> None:
        pass


class ModelMixin(torch.nn.Module, ResourceLifecycleMixin):
    r"""
    Base class for PyTorch components of the pipeline (noise-prediction network, encoder, decoder, ControlNets).

    Weights live in memory from construction, so a new model is loaded. Unloading offloads the weights to the CPU and
    loading moves them back to the device they were offloaded from. Subclasses that also inherit from
    [`ConfigMixin`] expose their config values as attributes, e.g. `unet.in_channels`.

        - **config_name** ([`str`]) -- Filename to save a model config to when calling [`~ConfigMixin.save_config`].
    """

    config_name = CONFIG_NAME

    def __init__(self):
        super().__init__()
        self._is_loaded = True
        self._onload_device = None

    def __getattr__(self, name: str) -> Any:
        """Reads config values as attributes without triggering `torch.nn.Module`'s `__getattr__`."""

        is_in_config = "_internal_dict" in self.__dict__ and name in self.__dict__["_internal_dict"]
        is_attribute = name in self.__dict__

        if is_in_config and not is_attribute:
            return self.__dict__["_internal_dict"][name]

        # call PyTorch's https://pytorch.org/docs/stable/_modules/torch/nn/modules/module.html#Module
        return super().__getattr__(name)

    def _load_resources(self) -> None:
        if self._onload_device is not None:
            self.to(self._onload_device)

    def _unload_resources(self) -> None:
        self._onload_device = self.device
        if self._onload_device.type != "cpu":
            self.to("cpu")

    def set_onload_device(self, device: Optional[Union[str, torch.device]]) -> None:
        """Sets the device the weights are moved to by the next [`~ResourceLifecycleMixin.load_resources`]."""
        self._onload_device = torch.device(device) if device is not None else None

    @property
    def device(self) -> torch.device:
        """
        `torch.device`: The device on which the module is (assuming that all the module parameters are on the same
        device).
        """
        return get_parameter_device(self)

    @property
    def dtype(self) -> torch.dtype:
        """
        `torch.dtype`: The dtype of the module (assuming that all the module parameters have the same dtype).
        """
        return get_parameter_dtype(self)
