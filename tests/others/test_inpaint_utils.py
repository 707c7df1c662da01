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

from diffusion_sampler import (
    DDIMScheduler,
    MaskedLatentBlender,
    MissingInputsError,
    ShapeMismatchError,
    blend_masked_latents,
    get_random_generator,
    prepare_mask_and_masked_image,
    resize_mask,
)


class BlendMaskedLatentsTests(unittest.TestCase):
    def setUp(self):
        generator = get_random_generator(0)
        self.latents = generator.next_array((1, 4, 8, 8))
        self.init_latents = generator.next_array((1, 4, 8, 8))

    def test_zero_mask_returns_source(self):
        mask = torch.zeros(1, 1, 8, 8)
        assert torch.equal(blend_masked_latents(self.latents, self.init_latents, mask), self.init_latents)

    def test_one_mask_returns_latents(self):
        mask = torch.ones(1, 1, 8, 8)
        assert torch.equal(blend_masked_latents(self.latents, self.init_latents, mask), self.latents)

    def test_partial_mask(self):
        mask = torch.zeros(1, 1, 8, 8)
        mask[..., :4] = 1.0
        blended = blend_masked_latents(self.latents, self.init_latents, mask)

        assert torch.equal(blended[..., :4], self.latents[..., :4])
        assert torch.equal(blended[..., 4:], self.init_latents[..., 4:])

    def test_mask_broadcasts_across_channels(self):
        mask = torch.full((1, 1, 8, 8), 0.25)
        blended = blend_masked_latents(self.latents, self.init_latents, mask)
        assert torch.allclose(blended, 0.75 * self.init_latents + 0.25 * self.latents)

    def test_mismatched_shapes(self):
        with self.assertRaises(ShapeMismatchError):
            blend_masked_latents(self.latents, self.init_latents, torch.ones(1, 1, 4, 4))
        with self.assertRaises(ShapeMismatchError):
            blend_masked_latents(self.latents, torch.ones(1, 4, 8, 4), torch.ones(1, 1, 8, 8))


class PrepareMaskTests(unittest.TestCase):
    def test_masked_image(self):
        image = torch.ones(1, 3, 16, 16)
        mask = torch.zeros(1, 1, 16, 16)
        mask[..., 8:] = 1.0

        mask_out, masked_image = prepare_mask_and_masked_image(image, mask)

        assert mask_out.shape == (1, 1, 16, 16)
        assert torch.equal(masked_image[..., :8], image[..., :8])
        assert torch.equal(masked_image[..., 8:], torch.zeros(1, 3, 16, 8))

    def test_mask_ranks(self):
        image = torch.ones(1, 3, 16, 16)

        for mask in [torch.zeros(16, 16), torch.zeros(1, 16, 16)]:
            mask_out, _ = prepare_mask_and_masked_image(image, mask)
            assert mask_out.shape == (1, 1, 16, 16)

    def test_mask_out_of_range(self):
        image = torch.ones(1, 3, 16, 16)

        with self.assertRaises(ValueError):
            prepare_mask_and_masked_image(image, torch.full((1, 1, 16, 16), 2.0))
        with self.assertRaises(ValueError):
            prepare_mask_and_masked_image(image, torch.full((1, 1, 16, 16), -1.0))

    def test_mask_size_mismatch(self):
        image = torch.ones(1, 3, 16, 16)
        with self.assertRaises(ShapeMismatchError):
            prepare_mask_and_masked_image(image, torch.zeros(1, 1, 8, 8))

    def test_resize_mask(self):
        mask = torch.zeros(1, 1, 16, 16)
        mask[..., 8:] = 1.0

        resized = resize_mask(mask, 2, 2)

        assert resized.shape == (1, 1, 2, 2)
        assert torch.equal(resized, torch.tensor([[[[0.0, 1.0], [0.0, 1.0]]]]))


class MaskedLatentBlenderTests(unittest.TestCase):
    def setUp(self):
        self.scheduler = DDIMScheduler()
        self.scheduler.set_timesteps(5)

        generator = get_random_generator(0)
        self.image_latents = generator.next_array((1, 4, 8, 8))
        self.noise = generator.next_array((1, 4, 8, 8))
        self.mask = torch.zeros(1, 1, 8, 8)

    def test_source_renoised_to_next_timestep(self):
        blender = MaskedLatentBlender(self.scheduler, self.image_latents, self.noise, self.mask)
        latents = torch.zeros(1, 4, 8, 8)

        blended = blender(latents, step_index=0)
        expected = self.scheduler.add_noise(self.image_latents, self.noise, self.scheduler.timesteps[1:2])

        assert torch.equal(blended, expected)

    def test_last_step_keeps_source_clean(self):
        blender = MaskedLatentBlender(self.scheduler, self.image_latents, self.noise, self.mask)
        blended = blender(torch.zeros(1, 4, 8, 8), step_index=len(self.scheduler.timesteps) - 1)

        assert torch.equal(blended, self.image_latents)

    def test_missing_inputs(self):
        for image_latents, noise, mask in [
            (None, self.noise, self.mask),
            (self.image_latents, None, self.mask),
            (self.image_latents, self.noise, None),
        ]:
            blender = MaskedLatentBlender(self.scheduler, image_latents, noise, mask)
            with self.assertRaises(MissingInputsError):
                blender(torch.zeros(1, 4, 8, 8), step_index=0)
