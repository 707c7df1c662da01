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

from diffusion_sampler import DDIMScheduler, get_random_generator

from .test_schedulers import SchedulerCommonTest


class DDIMSchedulerTest(SchedulerCommonTest):
    scheduler_classes = (DDIMScheduler,)
    forward_default_kwargs = (("eta", 0.0), ("num_inference_steps", 50))
    num_inference_steps = 50

    def get_scheduler_config(self, **kwargs):
        config = {
            "num_train_timesteps": 1000,
            "beta_start": 0.0001,
            "beta_end": 0.02,
            "beta_schedule": "linear",
            "clip_sample": True,
        }

        config.update(**kwargs)
        return config

    def test_timesteps(self):
        for timesteps in [100, 500, 1000]:
            self.check_over_configs(num_train_timesteps=timesteps)

    def test_steps_offset(self):
        for steps_offset in [0, 1]:
            self.check_over_configs(steps_offset=steps_offset)

        scheduler_class = self.scheduler_classes[0]
        scheduler_config = self.get_scheduler_config(steps_offset=1)
        scheduler = scheduler_class(**scheduler_config)
        scheduler.set_timesteps(5)
        assert torch.equal(scheduler.timesteps, torch.LongTensor([801, 601, 401, 201, 1]))

    def test_betas(self):
        for beta_start, beta_end in zip([0.0001, 0.001, 0.01], [0.002, 0.02, 0.2]):
            self.check_over_configs(beta_start=beta_start, beta_end=beta_end)

    def test_schedules(self):
        for schedule in ["linear", "scaled_linear", "squaredcos_cap_v2"]:
            self.check_over_configs(beta_schedule=schedule)

    def test_prediction_type(self):
        for prediction_type in ["epsilon", "v_prediction", "sample"]:
            self.check_over_configs(prediction_type=prediction_type)

    def test_clip_sample(self):
        for clip_sample in [True, False]:
            self.check_over_configs(clip_sample=clip_sample)

    def test_timestep_spacing(self):
        for timestep_spacing in ["trailing", "leading", "linspace"]:
            self.check_over_configs(timestep_spacing=timestep_spacing)

    def test_rescale_betas_zero_snr(self):
        for rescale_betas_zero_snr in [True, False]:
            self.check_over_configs(rescale_betas_zero_snr=rescale_betas_zero_snr)

    def test_thresholding(self):
        self.check_over_configs(thresholding=False)
        for threshold in [0.5, 1.0, 2.0]:
            for prediction_type in ["epsilon", "v_prediction"]:
                self.check_over_configs(
                    thresholding=True,
                    prediction_type=prediction_type,
                    sample_max_value=threshold,
                )

    def test_variance(self):
        scheduler_class = self.scheduler_classes[0]
        scheduler_config = self.get_scheduler_config()
        scheduler = scheduler_class(**scheduler_config)

        assert torch.sum(torch.abs(scheduler._get_variance(0, 0) - 0.0)) < 1e-5
        assert torch.sum(torch.abs(scheduler._get_variance(420, 400) - 0.14771)) < 1e-5
        assert torch.sum(torch.abs(scheduler._get_variance(980, 960) - 0.32460)) < 1e-5
        assert torch.sum(torch.abs(scheduler._get_variance(487, 486) - 0.00979)) < 1e-5
        assert torch.sum(torch.abs(scheduler._get_variance(999, 998) - 0.02)) < 1e-5

    def test_init_noise_sigma(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        assert scheduler.init_noise_sigma == 1.0

    def test_scale_model_input_is_identity(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)
        sample = self.dummy_sample
        assert scheduler.scale_model_input(sample, scheduler.timesteps[0]) is sample

    def test_eta_consumes_generator(self):
        scheduler_class = self.scheduler_classes[0]
        sample = self.dummy_sample
        residual = 0.1 * sample

        outputs = []
        for seed in [0, 0, 1]:
            scheduler = scheduler_class(**self.get_scheduler_config())
            scheduler.set_timesteps(self.num_inference_steps)
            generator = get_random_generator(seed)
            outputs.append(
                scheduler.step(residual, scheduler.timesteps[0], sample, eta=0.5, generator=generator).prev_sample
            )

        assert torch.equal(outputs[0], outputs[1])
        assert not torch.equal(outputs[0], outputs[2])

    def test_eta_rejects_generator_and_variance_noise(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)
        sample = self.dummy_sample

        with self.assertRaises(ValueError):
            scheduler.step(
                0.1 * sample,
                scheduler.timesteps[0],
                sample,
                eta=0.5,
                generator=get_random_generator(0),
                variance_noise=torch.zeros_like(sample),
            )

    def test_step_without_set_timesteps(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        sample = self.dummy_sample
        with self.assertRaises(ValueError):
            scheduler.step(0.1 * sample, 999, sample)

    def test_add_noise(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)

        sample = self.dummy_sample_deter
        noise = torch.ones_like(sample)
        timestep = torch.tensor([500])
        alpha_prod = scheduler.alphas_cumprod[500]

        noised = scheduler.add_noise(sample, noise, timestep)
        expected = alpha_prod**0.5 * sample + (1 - alpha_prod) ** 0.5 * noise
        assert torch.allclose(noised, expected, atol=1e-6)

    def test_full_loop_no_noise(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(10)

        sample = self.full_loop(scheduler)

        assert sample.shape == self.dummy_sample_deter.shape
        assert torch.isfinite(sample).all()
        # with clipping every clean estimate lies in [-1, 1]
        assert sample.abs().max() <= 1.0 + 1e-5
