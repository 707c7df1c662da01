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

from diffusion_sampler import LCMScheduler, get_random_generator

from .test_schedulers import SchedulerCommonTest


class LCMSchedulerTest(SchedulerCommonTest):
    scheduler_classes = (LCMScheduler,)
    forward_default_kwargs = (("num_inference_steps", 10),)

    def get_scheduler_config(self, **kwargs):
        config = {
            "num_train_timesteps": 1000,
            "beta_start": 0.00085,
            "beta_end": 0.0120,
            "beta_schedule": "scaled_linear",
            "prediction_type": "epsilon",
        }

        config.update(**kwargs)
        return config

    def test_timesteps(self):
        for timesteps in [100, 500, 1000]:
            # 0 is not guaranteed to be in the timestep schedule, but timesteps - 1 is
            self.check_over_configs(time_step=0, num_train_timesteps=timesteps)

    def test_betas(self):
        for beta_start, beta_end in zip([0.0001, 0.001, 0.01], [0.002, 0.02, 0.2]):
            self.check_over_configs(beta_start=beta_start, beta_end=beta_end)

    def test_schedules(self):
        for schedule in ["linear", "scaled_linear", "squaredcos_cap_v2"]:
            self.check_over_configs(beta_schedule=schedule)

    def test_prediction_type(self):
        for prediction_type in ["epsilon", "v_prediction"]:
            self.check_over_configs(prediction_type=prediction_type)

    def test_clip_sample(self):
        for clip_sample in [True, False]:
            self.check_over_configs(clip_sample=clip_sample)

    def test_thresholding(self):
        self.check_over_configs(thresholding=False)
        for threshold in [0.5, 1.0, 2.0]:
            for prediction_type in ["epsilon", "v_prediction"]:
                self.check_over_configs(
                    thresholding=True,
                    prediction_type=prediction_type,
                    sample_max_value=threshold,
                )

    def test_time_indices(self):
        # Get default timestep schedule.
        kwargs = dict(self.forward_default_kwargs)
        num_inference_steps = kwargs.pop("num_inference_steps", None)

        scheduler_config = self.get_scheduler_config()
        scheduler = self.scheduler_classes[0](**scheduler_config)
        scheduler.set_timesteps(num_inference_steps)
        timesteps = scheduler.timesteps
        for t in timesteps:
            self.check_over_configs(time_step=int((timesteps == t).nonzero().item()))

    def test_default_schedule(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(10)

        expected = torch.tensor([999, 899, 799, 699, 599, 499, 399, 299, 199, 99], dtype=torch.long)
        assert torch.equal(scheduler.timesteps, expected)

    def test_original_inference_steps_override(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(4, original_inference_steps=100)

        expected = torch.tensor([999, 749, 499, 249], dtype=torch.long)
        assert torch.equal(scheduler.timesteps, expected)

    def test_more_steps_than_original_steps(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(original_inference_steps=50))
        with self.assertRaises(ValueError):
            scheduler.set_timesteps(51)

    def test_original_steps_larger_than_train_timesteps(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(num_train_timesteps=100))
        with self.assertRaises(ValueError):
            scheduler.set_timesteps(10, original_inference_steps=200)

    def test_model_outputs_hold_denoised_sample(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)

        model = self.dummy_model()
        generator = get_random_generator(0)
        sample = self.dummy_sample_deter

        for t in scheduler.timesteps:
            output = scheduler.step(model(sample, t), t, sample, generator=generator)
            sample = output.prev_sample

            assert len(scheduler.model_outputs) == 1
            assert torch.equal(scheduler.model_outputs[0], output.pred_original_sample)

    def test_last_step_adds_no_noise(self):
        sample = self.dummy_sample

        outputs = []
        for seed in [0, 1]:
            scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
            scheduler.set_timesteps(1)
            outputs.append(self.step_scheduler(scheduler, 0.1 * sample, scheduler.timesteps[0], sample, seed=seed))

        for output in outputs:
            assert torch.equal(output.prev_sample, output.pred_original_sample)
        assert torch.equal(outputs[0].prev_sample, outputs[1].prev_sample)

    def test_full_loop_depends_on_seed(self):
        samples = []
        for seed in [0, 1]:
            scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
            scheduler.set_timesteps(self.num_inference_steps)
            samples.append(self.full_loop(scheduler, seed=seed))

        assert not torch.equal(samples[0], samples[1])
