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
"""`ConfigMixin`: JSON-serializable `__init__` arguments shared by schedulers and guiders."""
import functools
import importlib
import inspect
import json
import os
from collections import OrderedDict
from pathlib import PosixPath
from typing import Any, Dict, Optional, Set, Tuple, Union

import numpy as np
from huggingface_hub import hf_hub_download
from huggingface_hub.utils import EntryNotFoundError, HfHubHTTPError

from . import __version__
from .utils import DIFFUSION_SAMPLER_CACHE, logging


logger = logging.get_logger(__name__)


class FrozenDict(OrderedDict):
    """A read-only ordered dict whose entries are also readable as attributes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        for key, value in self.items():
            setattr(self, key, value)

        self.__frozen = True

    def _immutable(self, method: str):
        raise Exception(f"You cannot use ``{method}`` on a {self.__class__.__name__} instance.")

    def __delitem__(self, *args, **kwargs):
        self._immutable("__delitem__")

    def setdefault(self, *args, **kwargs):
        self._immutable("setdefault")

    def pop(self, *args, **kwargs):
        self._immutable("pop")

    def update(self, *args, **kwargs):
        self._immutable("update")

    def __setattr__(self, name, value):
        if getattr(self, "_FrozenDict__frozen", False):
            self._immutable("__setattr__")
        super().__setattr__(name, value)

    def __setitem__(self, name, value):
        if getattr(self, "_FrozenDict__frozen", False):
            self._immutable("__setitem__")
        super().__setitem__(name, value)


class ConfigMixin:
    r"""
    Base class of every configurable object of the library. The arguments of a `@register_to_config` decorated
    `__init__` are stored in the frozen `self.config`, saved as JSON with [`~ConfigMixin.save_config`] and turned back
    into an object with [`~ConfigMixin.load_config`] and [`~ConfigMixin.from_config`].

    Class attributes:
        - **config_name** (`str`) -- File name of the saved configuration. Must be set by subclasses.
        - **ignore_for_config** (`List[str]`) -- `__init__` arguments that are not stored in the config.
        - **has_compatibles** (`bool`) -- Whether configurations of compatible classes (e.g. other schedulers) can be
          loaded without warnings about their extra keys.
    """

    config_name = None
    ignore_for_config = []
    has_compatibles = False

    def register_to_config(self, **kwargs):
        if self.config_name is None:
            raise NotImplementedError(f"Make sure that {self.__class__} has defined a class name `config_name`")
        kwargs.pop("kwargs", None)
        if hasattr(self, "_internal_dict"):
            kwargs = {**self._internal_dict, **kwargs}
            logger.debug(f"Updating config of {self.__class__.__name__} to {kwargs}")

        self._internal_dict = FrozenDict(kwargs)

    def __getattr__(self, name: str) -> Any:
        """Config attributes are readable as instance attributes, e.g. `scheduler.num_train_timesteps`. Values set on
        the instance itself take precedence."""
        internal_dict = self.__dict__.get("_internal_dict")
        if internal_dict is not None and name in internal_dict and name not in self.__dict__:
            return internal_dict[name]

        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def save_config(self, save_directory: Union[str, os.PathLike], **kwargs):
        """
        Saves the configuration as `config_name` inside `save_directory`, which is created if needed.

        Args:
            save_directory (`str` or `os.PathLike`):
                Directory where the configuration JSON file will be saved.
        """
        if os.path.isfile(save_directory):
            raise AssertionError(f"Provided path ({save_directory}) should be a directory, not a file")

        os.makedirs(save_directory, exist_ok=True)
        output_config_file = os.path.join(save_directory, self.config_name)

        self.to_json_file(output_config_file)
        logger.info(f"Configuration saved in {output_config_file}")

    @classmethod
    def from_config(cls, config: Union[FrozenDict, Dict[str, Any]] = None, return_unused_kwargs=False, **kwargs):
        r"""
        Instantiate a Python class from a config dictionary

        Parameters:
            config (`Dict[str, Any]`):
                A config dictionary, either the `config` of another instance or the output of
                [`~ConfigMixin.load_config`]. Configurations of compatible classes are accepted.
            return_unused_kwargs (`bool`, *optional*, defaults to `False`):
                Whether kwargs that are not consumed by the Python class should be returned or not.
            kwargs (remaining dictionary of keyword arguments, *optional*):
                Override same named entries of `config`.

        Examples:

        ```python
        >>> from diffusion_sampler import DDIMScheduler, EulerDiscreteScheduler

        >>> scheduler = DDIMScheduler(beta_schedule="scaled_linear", beta_start=0.00085, beta_end=0.012)

        >>> # Instantiate Euler scheduler class with same config as DDIM
        >>> scheduler = EulerDiscreteScheduler.from_config(scheduler.config)
        ```
        """
        if config is None:
            raise ValueError("Please make sure to provide a config as the first positional argument.")

        if not isinstance(config, dict):
            raise ValueError(
                f"`from_config` expects a configuration dictionary, got {type(config)}. If you were trying to load a"
                f" configuration from disk, please use {cls.__name__}.from_pretrained(...) instead."
            )

        init_dict, unused_kwargs, hidden_dict = cls.extract_init_dict(config, **kwargs)

        model = cls(**init_dict)

        # entries meant for compatible classes survive a round trip through this class
        model.register_to_config(**hidden_dict)
        unused_kwargs = {**unused_kwargs, **hidden_dict}

        if return_unused_kwargs:
            return (model, unused_kwargs)
        return model

    @classmethod
    def load_config(
        cls,
        pretrained_model_name_or_path: Union[str, os.PathLike],
        return_unused_kwargs=False,
        **kwargs,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        r"""
        Load a configuration dictionary from a local directory, a JSON file, or a repository on the Hub.

        Parameters:
            pretrained_model_name_or_path (`str` or `os.PathLike`):
                The path of a JSON file, a directory containing `config_name`, or the repo id of a Hub repository.
            subfolder (`str`, *optional*):
                Folder of the configuration inside the directory or repository. A local directory is searched in
                `subfolder` first.
            cache_dir, force_download, local_files_only, token, revision (*optional*):
                Passed to `huggingface_hub.hf_hub_download` when the configuration is fetched from the Hub.
            return_unused_kwargs (`bool`, *optional*, defaults to `False):
                Whether unused keyword arguments of the config shall be returned.

        Raises:
            `ValueError`: if the class defines no `config_name`.
            `EnvironmentError`: if no configuration can be found, downloaded or parsed.
        """
        subfolder = kwargs.pop("subfolder", None)
        hub_kwargs = {
            "cache_dir": kwargs.pop("cache_dir", DIFFUSION_SAMPLER_CACHE),
            "force_download": kwargs.pop("force_download", False),
            "local_files_only": kwargs.pop("local_files_only", False),
            "token": kwargs.pop("token", None),
            "revision": kwargs.pop("revision", None),
        }

        if cls.config_name is None:
            raise ValueError(
                "`self.config_name` is not defined. Note that one should not load a config from "
                "`ConfigMixin`. Please make sure to define `config_name` in a class inheriting from `ConfigMixin`"
            )

        path = str(pretrained_model_name_or_path)
        if os.path.isfile(path):
            config_file = path
        elif os.path.isdir(path):
            config_file = cls._find_local_config(path, subfolder)
        else:
            config_file = cls._download_config(path, subfolder, **hub_kwargs)

        try:
            config_dict = cls._dict_from_json_file(config_file)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise EnvironmentError(f"It looks like the config file at '{config_file}' is not a valid JSON file.")

        if not return_unused_kwargs:
            return config_dict

        return config_dict, kwargs

    @classmethod
    def _find_local_config(cls, directory: str, subfolder: Optional[str] = None) -> str:
        candidates = [os.path.join(directory, cls.config_name)]
        if subfolder is not None:
            candidates.insert(0, os.path.join(directory, subfolder, cls.config_name))

        for candidate in candidates:
            if os.path.isfile(candidate):
                return candidate
        raise EnvironmentError(f"Error no file named {cls.config_name} found in directory {directory}.")

    @classmethod
    def _download_config(cls, repo_id: str, subfolder: Optional[str] = None, **hub_kwargs) -> str:
        try:
            return hf_hub_download(repo_id, filename=cls.config_name, subfolder=subfolder, **hub_kwargs)
        except (EntryNotFoundError, HfHubHTTPError, ValueError) as err:
            # ValueError covers repo ids that are neither a local path nor a valid Hub identifier
            raise EnvironmentError(
                f"Can't load {cls.config_name} for '{repo_id}': it is not a local file or directory and it could not"
                f" be fetched from the Hub ({err})."
            ) from err

    @staticmethod
    def _get_init_keys(cls) -> Set[str]:
        return set(inspect.signature(cls.__init__).parameters.keys())

    @classmethod
    def _foreign_config_keys(cls, config_dict: Dict[str, Any], expected_keys: Set[str]) -> Set[str]:
        """
        Keys of `config_dict` that belong to a compatible class or to the class that saved it, and that this class
        does not expect. They are dropped without a warning so that e.g. a DDIM configuration loads into any scheduler.
        """
        foreign_keys = set()
        if cls.has_compatibles:
            for compatible_cls in cls._get_compatibles():
                foreign_keys |= cls._get_init_keys(compatible_cls)

        library = importlib.import_module(__name__.split(".")[0])
        saved_cls = getattr(library, config_dict.get("_class_name", cls.__name__), None)
        if inspect.isclass(saved_cls) and saved_cls is not cls:
            foreign_keys |= cls._get_init_keys(saved_cls)

        return foreign_keys - expected_keys

    @classmethod
    def extract_init_dict(cls, config_dict, **kwargs):
        """
        Splits a configuration into the `__init__` arguments of this class, the unused entries, and the "hidden"
        entries that are kept in the config for compatible classes. `kwargs` take precedence over `config_dict`.

        Returns:
            `Tuple[Dict, Dict, Dict]`: `(init_dict, unused_kwargs, hidden_config_dict)`.
        """
        expected_keys = cls._get_init_keys(cls) - {"self", "kwargs"} - set(cls.ignore_for_config)
        foreign_keys = cls._foreign_config_keys(config_dict, expected_keys)
        remaining = {
            key: value
            for key, value in config_dict.items()
            if not key.startswith("_") and key not in foreign_keys
        }

        init_dict = {}
        for key in expected_keys:
            if key in kwargs:
                remaining.pop(key, None)
                init_dict[key] = kwargs.pop(key)
            elif key in remaining:
                init_dict[key] = remaining.pop(key)

        if len(remaining) > 0:
            logger.warning(
                f"The config attributes {remaining} were passed to {cls.__name__}, but are not expected and will be"
                f" ignored. Please verify your {cls.config_name} configuration file."
            )

        defaulted_keys = expected_keys - set(init_dict.keys())
        if len(defaulted_keys) > 0:
            logger.info(f"{defaulted_keys} was not found in config. Values will be initialized to default values.")

        unused_kwargs = {**remaining, **kwargs}
        hidden_config_dict = {key: value for key, value in config_dict.items() if key not in init_dict}

        return init_dict, unused_kwargs, hidden_config_dict

    @classmethod
    def _dict_from_json_file(cls, json_file: Union[str, os.PathLike]):
        with open(json_file, "r", encoding="utf-8") as reader:
            return json.loads(reader.read())

    def __repr__(self):
        return f"{self.__class__.__name__} {self.to_json_string()}"

    @property
    def config(self) -> Dict[str, Any]:
        """The frozen configuration of this instance."""
        return self._internal_dict

    def to_json_string(self) -> str:
        """
        Serializes the configuration, with the class name and library version, to a JSON string.

        Returns:
            `str`: The configuration in JSON format, keys sorted.
        """
        config_dict = dict(self._internal_dict) if hasattr(self, "_internal_dict") else {}
        config_dict["_class_name"] = self.__class__.__name__
        config_dict["_diffusion_sampler_version"] = __version__

        def to_json_saveable(value):
            if isinstance(value, np.ndarray):
                value = value.tolist()
            elif isinstance(value, PosixPath):
                value = str(value)
            return value

        config_dict = {k: to_json_saveable(v) for k, v in config_dict.items()}
        return json.dumps(config_dict, indent=2, sort_keys=True) + "\n"

    def to_json_file(self, json_file_path: Union[str, os.PathLike]):
        with open(json_file_path, "w", encoding="utf-8") as writer:
            writer.write(self.to_json_string())


def register_to_config(init):
    r"""
    Decorator for the `__init__` of [`ConfigMixin`] subclasses. Every argument, whether passed positionally, by keyword
    or left at its default, is registered in the config before `__init__` runs. Arguments named in
    `ignore_for_config` are not registered. Private keyword arguments (starting with `_`) are only stored in the
    config and never reach `__init__`.
    """
    signature = inspect.signature(init)
    parameters = [
        parameter
        for parameter in list(signature.parameters.values())[1:]
        if parameter.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    ]

    @functools.wraps(init)
    def inner_init(self, *args, **kwargs):
        if not isinstance(self, ConfigMixin):
            raise RuntimeError(
                f"`@register_to_config` was applied to {self.__class__.__name__} init method, but this class does "
                "not inherit from `ConfigMixin`."
            )

        init_kwargs = {k: v for k, v in kwargs.items() if not k.startswith("_")}
        private_kwargs = {k: v for k, v in kwargs.items() if k.startswith("_")}

        config = dict(zip((parameter.name for parameter in parameters), args))
        for parameter in parameters:
            if parameter.name not in config:
                config[parameter.name] = init_kwargs.get(parameter.name, parameter.default)

        ignore = getattr(self, "ignore_for_config", [])
        config = {k: v for k, v in config.items() if k not in ignore}

        self.register_to_config(**{**private_kwargs, **config})
        init(self, *args, **init_kwargs)

    return inner_init
