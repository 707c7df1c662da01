# coding=utf-8
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

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import numpy as np
import PIL.Image
import torch

from ..image_processor import VaeImageProcessor
from ..models import ModelMixin, MultiConditioning, ResourceLifecycleMixin
from ..utils import logging
from ..utils.logging import tqdm


logger = logging.get_logger(__name__)  # pylint: disable=invalid-name


@dataclass
class ComputeConfig:
    """
    Device and dtype the pipeline computes in. One instance is shared by reference between the pipeline and its
    components; it is only ever changed through [`DiffusionPipeline.set_compute_config`].
    """

    device: torch.device = field(default_factory=lambda: torch.device("cpu"))
    dtype: torch.dtype = torch.float32

    def __post_init__(self):
        self.device = torch.device(self.device)


class DiffusionPipeline:
    r"""
    Base class for all pipelines.

    [`DiffusionPipeline`] stores all components (models, schedulers, and processors) for diffusion pipelines and
    provides methods to:

        - reconfigure the device and dtype of all components at once
        - load and unload the resources of components implementing [`ResourceLifecycleMixin`]
        - enable/disable the progress bar for the denoising iteration

    Class attributes:

        - **_optional_components** (`List[str]`) -- List of all optional components that don't have to be passed to the
          pipeline to function (should be overridden by subclasses).
    """

    _optional_components = []

    def __init__(self, compute_config: Optional[ComputeConfig] = None, reduce_memory: bool = False):
        self._components = OrderedDict()
        self.compute_config = compute_config if compute_config is not None else ComputeConfig()
        self._compute_config_lock = threading.Lock()
        self.reduce_memory = reduce_memory

    def register_modules(self, **kwargs):
        for name, module in kwargs.items():
            if module is None and name not in self._optional_components:
                raise ValueError(f"{self.__class__.__name__} requires a `{name}` component.")
            self._components[name] = module
            setattr(self, name, module)

    @property
    def components(self) -> Dict[str, Any]:
        r"""
        Returns (`dict`):
            A dictionary containing all the components registered with the pipeline, in registration order.
        """
        return {name: getattr(self, name) for name in self._components}

    @property
    def device(self) -> torch.device:
        return self.compute_config.device

    @property
    def dtype(self) -> torch.dtype:
        return self.compute_config.dtype

    def set_compute_config(
        self, device: Optional[Union[str, torch.device]] = None, dtype: Optional[torch.dtype] = None
    ) -> ComputeConfig:
        r"""
        Moves every PyTorch component to `device` and `dtype` and updates the shared [`ComputeConfig`] in place. The
        update holds a lock, so concurrent reconfigurations are applied one after the other and never interleave.

        Args:
            device (`str` or `torch.device`, *optional*):
                The new compute device. Unchanged if `None`.
            dtype (`torch.dtype`, *optional*):
                The new compute dtype. Unchanged if `None`.

        Returns:
            [`ComputeConfig`]: The shared, updated compute configuration.
        """
        with self._compute_config_lock:
            device = torch.device(device) if device is not None else self.compute_config.device
            dtype = dtype if dtype is not None else self.compute_config.dtype

            for module in self._torch_modules():
                if isinstance(module, ModelMixin) and not module.is_loaded:
                    # weights move to `device` when they are loaded again
                    module.to(dtype=dtype)
                    module.set_onload_device(device)
                else:
                    module.to(device=device, dtype=dtype)

            self.compute_config.device = device
            self.compute_config.dtype = dtype
            logger.info(f"Compute configuration set to device={device}, dtype={dtype}.")
        return self.compute_config

    def _torch_modules(self) -> List[torch.nn.Module]:
        modules = []
        for component in self.components.values():
            if isinstance(component, torch.nn.Module):
                modules.append(component)
            elif isinstance(component, MultiConditioning):
                modules.extend(c.model for c in component.inputs if isinstance(c.model, torch.nn.Module))
        return modules

    @staticmethod
    def load_component(component) -> None:
        """Loads the resources of `component` if it implements [`ResourceLifecycleMixin`]."""
        if isinstance(component, ResourceLifecycleMixin):
            component.load_resources()

    def maybe_unload_components(self, *components) -> None:
        """Unloads the given components when the pipeline runs with `reduce_memory=True`."""
        if not self.reduce_memory:
            return
        for component in components:
            if isinstance(component, (ResourceLifecycleMixin, MultiConditioning)):
                component.unload_resources()

    def unload_resources(self) -> None:
        """Unloads the resources of every component, regardless of `reduce_memory`."""
        for component in self.components.values():
            if isinstance(component, (ResourceLifecycleMixin, MultiConditioning)):
                component.unload_resources()

    @staticmethod
    def numpy_to_pil(images: np.ndarray) -> List[PIL.Image.Image]:
        """
        Convert a NumPy image or a batch of images to a PIL image.
        """
        return VaeImageProcessor.numpy_to_pil(images)

    def progress_bar(self, iterable=None, total=None):
        if not hasattr(self, "_progress_bar_config"):
            self._progress_bar_config = {}
        elif not isinstance(self._progress_bar_config, dict):
            raise ValueError(
                f"`self._progress_bar_config` should be of type `dict`, but is {type(self._progress_bar_config)}."
            )

        if iterable is not None:
            return tqdm(iterable, **self._progress_bar_config)
        elif total is not None:
            return tqdm(total=total, **self._progress_bar_config)
        else:
            raise ValueError("Either `total` or `iterable` has to be defined.")

    def set_progress_bar_config(self, **kwargs):
        self._progress_bar_config = kwargs
