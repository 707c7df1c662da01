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
import unittest

import torch

from diffusion_sampler import DiffusionSamplerError, EncoderMissingError, MissingInputsError, ShapeMismatchError
from diffusion_sampler.utils import check_broadcastable, check_concatenable


class ErrorsTests(unittest.TestCase):
    def test_hierarchy(self):
        for error_class in [EncoderMissingError, MissingInputsError, ShapeMismatchError]:
            assert issubclass(error_class, DiffusionSamplerError)
            assert issubclass(error_class, ValueError)

    def test_encoder_missing_default_message(self):
        assert "encoder" in str(EncoderMissingError())
        assert str(EncoderMissingError("custom")) == "custom"

    def test_check_broadcastable(self):
        check_broadcastable("mask", (1, 1, 8, 8), (2, 4, 8, 8))
        check_broadcastable("mask", (2, 4, 8, 8), (2, 4, 8, 8))

        with self.assertRaises(ShapeMismatchError):
            check_broadcastable("mask", (1, 8, 8), (1, 4, 8, 8))
        with self.assertRaises(ShapeMismatchError):
            check_broadcastable("mask", (1, 1, 4, 8), (1, 4, 8, 8))

    def test_check_concatenable(self):
        a = torch.zeros(2, 4, 8, 8)
        b = torch.zeros(2, 1, 8, 8)
        check_concatenable([a, b, a], dim=1)
        check_concatenable([a, torch.zeros(2, 4, 8, 8)], dim=-3)

        with self.assertRaises(ShapeMismatchError):
            check_concatenable([a, torch.zeros(1, 1, 8, 8)], dim=1)
        with self.assertRaises(ShapeMismatchError):
            check_concatenable([a, torch.zeros(2, 1, 8)], dim=1)
