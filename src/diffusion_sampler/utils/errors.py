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
"""Errors raised by the sampling pipeline. All of them are configuration errors and are never retried."""


class DiffusionSamplerError(ValueError):
    """Base class for every error raised by `diffusion_sampler`."""


class EncoderMissingError(DiffusionSamplerError):
    """An image-to-image or inpainting generation was requested but the pipeline has no `encoder`."""

    def __init__(self, message=None):
        super().__init__(
            message
            or "An `init_image` was passed but the pipeline has no `encoder`. Pass an `encoder` to the pipeline to"
            " run image-to-image or inpainting."
        )


class MissingInputsError(DiffusionSamplerError):
    """A mask or a source latent required by the current path was not prepared."""


class ShapeMismatchError(DiffusionSamplerError):
    """Two tensors entering a fused operation have incompatible shapes."""


def check_broadcastable(name: str, shape, target_shape) -> None:
    """Raises `ShapeMismatchError` if `shape` does not broadcast to `target_shape`."""
    shape = tuple(shape)
    target_shape = tuple(target_shape)
    if len(shape) != len(target_shape):
        raise ShapeMismatchError(f"`{name}` has shape {shape} which does not match the rank of {target_shape}.")
    for dim, target_dim in zip(shape, target_shape):
        if dim != target_dim and dim != 1:
            raise ShapeMismatchError(f"`{name}` has shape {shape} which cannot be broadcast to {target_shape}.")


def check_concatenable(tensors, dim: int) -> None:
    """Raises `ShapeMismatchError` unless every tensor matches the others on all axes but `dim`."""
    reference = tuple(tensors[0].shape)
    for tensor in tensors[1:]:
        shape = tuple(tensor.shape)
        if len(shape) != len(reference) or any(
            a != b for axis, (a, b) in enumerate(zip(shape, reference)) if axis != dim % len(reference)
        ):
            raise ShapeMismatchError(
                f"Cannot concatenate tensors of shapes {reference} and {shape} along dimension {dim}."
            )
