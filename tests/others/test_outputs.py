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
import pickle as pkl
import unittest
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np
import PIL.Image
import torch

from diffusion_sampler import LatentDiffusionPipelineOutput, SchedulerOutput
from diffusion_sampler.utils.outputs import BaseOutput


@dataclass
class CustomOutput(BaseOutput):
    images: Union[List[PIL.Image.Image], np.ndarray]


@dataclass
class CustomOutputWithOptional(BaseOutput):
    images: np.ndarray
    latents: Optional[torch.Tensor] = None


class OutputsTester(unittest.TestCase):
    def test_outputs_single_attribute(self):
        outputs = CustomOutput(images=np.random.rand(1, 3, 4, 4))

        # check every way of getting the attribute
        assert isinstance(outputs.images, np.ndarray)
        assert outputs.images.shape == (1, 3, 4, 4)
        assert isinstance(outputs["images"], np.ndarray)
        assert outputs["images"].shape == (1, 3, 4, 4)
        assert isinstance(outputs[0], np.ndarray)
        assert outputs[0].shape == (1, 3, 4, 4)

        # test with a non-tensor attribute
        outputs = CustomOutput(images=[PIL.Image.new("RGB", (4, 4))])

        # check every way of getting the attribute
        assert isinstance(outputs.images, list)
        assert isinstance(outputs.images[0], PIL.Image.Image)
        assert isinstance(outputs["images"], list)
        assert isinstance(outputs["images"][0], PIL.Image.Image)
        assert isinstance(outputs[0], list)
        assert isinstance(outputs[0][0], PIL.Image.Image)

    def test_outputs_dict_init(self):
        outputs = CustomOutput({"images": np.random.rand(1, 3, 4, 4)})

        # check every way of getting the attribute
        assert isinstance(outputs.images, np.ndarray)
        assert outputs.images.shape == (1, 3, 4, 4)
        assert isinstance(outputs["images"], np.ndarray)
        assert outputs["images"].shape == (1, 3, 4, 4)
        assert isinstance(outputs[0], np.ndarray)
        assert outputs[0].shape == (1, 3, 4, 4)

    def test_outputs_skip_none(self):
        outputs = CustomOutputWithOptional(images=np.zeros((1, 4, 4, 3)))
        assert list(outputs.keys()) == ["images"]
        assert len(outputs.to_tuple()) == 1

        outputs = CustomOutputWithOptional(images=np.zeros((1, 4, 4, 3)), latents=torch.zeros(1, 4, 1, 1))
        assert list(outputs.keys()) == ["images", "latents"]
        assert outputs[1].shape == (1, 4, 1, 1)

    def test_outputs_are_immutable_mappings(self):
        outputs = CustomOutput(images=np.zeros((1, 4, 4, 3)))

        with self.assertRaises(Exception):
            outputs.pop("images")
        with self.assertRaises(Exception):
            outputs.update(images=None)
        with self.assertRaises(Exception):
            del outputs["images"]

    def test_outputs_serialization(self):
        outputs_orig = CustomOutput(images=[PIL.Image.new("RGB", (4, 4))])
        serialized = pkl.dumps(outputs_orig)
        outputs_copy = pkl.loads(serialized)

        # Check original and copy are equal
        assert dir(outputs_orig) == dir(outputs_copy)
        assert dict(outputs_orig) == dict(outputs_copy)
        assert vars(outputs_orig) == vars(outputs_copy)

    def test_scheduler_output(self):
        prev_sample = torch.zeros(1, 4, 8, 8)
        output = SchedulerOutput(prev_sample=prev_sample)

        assert output.prev_sample is prev_sample
        assert output.pred_original_sample is None
        assert output[0] is prev_sample

    def test_pipeline_output(self):
        images = np.zeros((1, 8, 8, 3))
        latents = torch.zeros(1, 4, 1, 1)
        output = LatentDiffusionPipelineOutput(images=images, latents=latents)

        assert output.images is images
        assert output["latents"] is latents
        images_out, latents_out = output.to_tuple()
        assert images_out is images
        assert latents_out is latents
