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
import tempfile
import unittest

import torch
from parameterized import parameterized

from diffusion_sampler import ClassifierFreeGuidance, ShapeMismatchError
from diffusion_sampler.guiders.classifier_free_guidance import perform_guidance
from diffusion_sampler.guiders.guider_utils import rescale_noise_cfg


class ClassifierFreeGuidanceTests(unittest.TestCase):
    def get_dual_batch(self, seed=0):
        generator = torch.Generator().manual_seed(seed)
        uncond = torch.randn((1, 4, 8, 8), generator=generator)
        cond = torch.randn((1, 4, 8, 8), generator=generator)
        return uncond, cond, torch.cat([uncond, cond])

    def test_scale_zero_returns_unconditional(self):
        uncond, _, noise_pred = self.get_dual_batch()
        assert torch.equal(perform_guidance(noise_pred, 0.0), uncond)

    def test_scale_one_returns_conditional(self):
        _, cond, noise_pred = self.get_dual_batch()
        assert torch.equal(perform_guidance(noise_pred, 1.0), cond)

    @parameterized.expand([(2.0,), (7.5,), (15.0,)])
    def test_guidance_formula(self, guidance_scale):
        uncond, cond, noise_pred = self.get_dual_batch()
        guider = ClassifierFreeGuidance(guidance_scale=guidance_scale)

        output = guider.forward(noise_pred)

        assert torch.allclose(output.pred, uncond + guidance_scale * (cond - uncond), atol=1e-5)
        assert torch.equal(output.pred_cond, cond)
        assert torch.equal(output.pred_uncond, uncond)
        assert torch.equal(guider(noise_pred), output.pred)

    def test_odd_batch_raises(self):
        noise_pred = torch.randn(3, 4, 8, 8)
        with self.assertRaises(ShapeMismatchError):
            perform_guidance(noise_pred, 7.5)
        with self.assertRaises(ShapeMismatchError):
            ClassifierFreeGuidance(guidance_scale=7.5)(noise_pred)

    def test_unit_scale_is_identity(self):
        guider = ClassifierFreeGuidance(guidance_scale=1.0)
        noise_pred = torch.randn(1, 4, 8, 8)

        assert not guider.do_classifier_free_guidance
        assert guider.num_conditions == 1
        assert guider(noise_pred) is noise_pred

    @parameterized.expand([(0.0,), (0.5,), (1.5,)])
    def test_enabled_guidance_doubles_conditions(self, guidance_scale):
        guider = ClassifierFreeGuidance(guidance_scale=guidance_scale)
        assert guider.do_classifier_free_guidance
        assert guider.num_conditions == 2

    def test_scale_below_one_blends(self):
        uncond, cond, noise_pred = self.get_dual_batch()

        assert torch.equal(ClassifierFreeGuidance(guidance_scale=0.0)(noise_pred), uncond)
        assert torch.allclose(
            ClassifierFreeGuidance(guidance_scale=0.5)(noise_pred), 0.5 * (uncond + cond), atol=1e-6
        )

    def test_negative_scale_raises(self):
        with self.assertRaises(ValueError):
            ClassifierFreeGuidance(guidance_scale=-1.0)

    def test_guidance_rescale(self):
        _, cond, noise_pred = self.get_dual_batch()
        guided = ClassifierFreeGuidance(guidance_scale=7.5)(noise_pred)
        rescaled = ClassifierFreeGuidance(guidance_scale=7.5, guidance_rescale=1.0)(noise_pred)

        # full rescaling matches the standard deviation of the conditional prediction
        assert torch.allclose(rescaled.std(), cond.std(), atol=1e-4)
        assert torch.allclose(rescaled, rescale_noise_cfg(guided, cond, guidance_rescale=1.0))

    def test_new(self):
        guider = ClassifierFreeGuidance(guidance_scale=3.5)
        new_guider = guider.new(guidance_scale=5.0)

        assert new_guider.guidance_scale == 5.0
        assert new_guider.guidance_rescale == guider.guidance_rescale
        assert guider.guidance_scale == 3.5

    def test_save_load(self):
        guider = ClassifierFreeGuidance(guidance_scale=4.0, guidance_rescale=0.7)

        with tempfile.TemporaryDirectory() as tmpdirname:
            guider.save_pretrained(tmpdirname)
            new_guider = ClassifierFreeGuidance.from_pretrained(tmpdirname)

        assert new_guider.guidance_scale == 4.0
        assert new_guider.guidance_rescale == 0.7
