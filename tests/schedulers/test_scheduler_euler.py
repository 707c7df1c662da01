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
import torch

from diffusion_sampler import EulerDiscreteScheduler, get_random_generator

from .test_schedulers import SchedulerCommonTest


class EulerDiscreteSchedulerTest(SchedulerCommonTest):
    scheduler_classes = (EulerDiscreteScheduler,)
    num_inference_steps = 10

    def get_scheduler_config(self, **kwargs):
        config = {
            "num_train_timesteps": 1100,
            "beta_start": 0.0001,
            "beta_end": 0.02,
            "beta_schedule": "linear",
        }

        config.update(**kwargs)
        return config

    def test_timesteps(self):
        for timesteps in [10, 50, 100, 1000]:
            self.check_over_configs(num_train_timesteps=timesteps)

    def test_betas(self):
        for beta_start, beta_end in zip([0.00001, 0.0001, 0.001], [0.0002, 0.002, 0.02]):
            self.check_over_configs(beta_start=beta_start, beta_end=beta_end)

    def test_schedules(self):
        for schedule in ["linear", "scaled_linear"]:
            self.check_over_configs(beta_schedule=schedule)

    def test_prediction_type(self):
        for prediction_type in ["epsilon", "v_prediction", "sample"]:
            self.check_over_configs(prediction_type=prediction_type)

    def test_timestep_spacing(self):
        for timestep_spacing in ["trailing", "leading", "linspace"]:
            self.check_over_configs(timestep_spacing=timestep_spacing)

    def test_karras_sigmas(self):
        self.check_over_configs(use_karras_sigmas=True)

        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(use_karras_sigmas=True))
        scheduler.set_timesteps(self.num_inference_steps)

        assert len(scheduler.timesteps) == self.num_inference_steps
        assert len(scheduler.sigmas) == self.num_inference_steps + 1
        # karras sigmas decrease strictly towards the trailing zero
        assert torch.all(scheduler.sigmas[:-1] > scheduler.sigmas[1:])
        assert scheduler.sigmas[-1] == 0.0

    def test_final_sigmas_type(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(final_sigmas_type="sigma_min"))
        scheduler.set_timesteps(self.num_inference_steps)
        assert scheduler.sigmas[-1] > 0.0

        with self.assertRaises(ValueError):
            self.scheduler_classes[0](**self.get_scheduler_config(final_sigmas_type="one"))

    def test_timesteps_are_float(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)
        assert scheduler.timesteps.dtype == torch.float32

    def test_integer_timesteps_rejected(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)
        sample = self.dummy_sample

        for timestep in [0, torch.tensor(0, dtype=torch.long)]:
            with self.assertRaises(ValueError):
                scheduler.step(0.1 * sample, timestep, sample)

    def test_init_noise_sigma(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(timestep_spacing="linspace"))
        scheduler.set_timesteps(self.num_inference_steps)
        max_sigma = scheduler.sigmas.max()
        assert torch.allclose(torch.as_tensor(scheduler.init_noise_sigma), max_sigma)

        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(timestep_spacing="leading"))
        scheduler.set_timesteps(self.num_inference_steps)
        max_sigma = scheduler.sigmas.max()
        assert torch.allclose(torch.as_tensor(scheduler.init_noise_sigma), (max_sigma**2 + 1) ** 0.5)

    def test_scale_model_input(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)

        sample = self.dummy_sample
        scaled = scheduler.scale_model_input(sample, scheduler.timesteps[0])
        sigma = scheduler.sigmas[0]

        assert torch.allclose(scaled, sample / (sigma**2 + 1) ** 0.5)
        assert scheduler.step_index == 0

    def test_strength_keeps_sigmas_aligned(self):
        scheduler_class = self.scheduler_classes[0]

        full = scheduler_class(**self.get_scheduler_config())
        full.set_timesteps(self.num_inference_steps)

        partial = scheduler_class(**self.get_scheduler_config())
        partial.set_timesteps(self.num_inference_steps, strength=0.5)

        assert len(partial.timesteps) == 5
        assert len(partial.sigmas) == 6
        assert torch.equal(partial.timesteps, full.timesteps[5:])
        assert torch.equal(partial.sigmas, full.sigmas[5:])

    def test_add_noise_uses_sigma(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)

        sample = self.dummy_sample_deter
        noise = torch.ones_like(sample)
        noised = scheduler.add_noise(sample, noise, scheduler.timesteps[2:3])

        assert torch.allclose(noised, sample + scheduler.sigmas[2], atol=1e-6)

    def test_churn_consumes_generator(self):
        scheduler_class = self.scheduler_classes[0]
        sample = self.dummy_sample

        outputs = []
        for seed in [0, 0, 1]:
            scheduler = scheduler_class(**self.get_scheduler_config())
            scheduler.set_timesteps(self.num_inference_steps)
            timestep = scheduler.timesteps[0]
            scheduler.scale_model_input(sample, timestep)
            generator = get_random_generator(seed)
            outputs.append(scheduler.step(0.1 * sample, timestep, sample, s_churn=1.0, generator=generator).prev_sample)

        assert torch.equal(outputs[0], outputs[1])
        assert not torch.equal(outputs[0], outputs[2])

    def test_full_loop_no_noise(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)

        first = self.full_loop(scheduler, seed=0)

        scheduler.set_timesteps(self.num_inference_steps)
        second = self.full_loop(scheduler, seed=1)

        # without churn the seed is never consumed
        assert torch.equal(first, second)
