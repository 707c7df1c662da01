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

from diffusion_sampler import DPMSolverMultistepScheduler

from .test_schedulers import SchedulerCommonTest


class DPMSolverMultistepSchedulerTest(SchedulerCommonTest):
    scheduler_classes = (DPMSolverMultistepScheduler,)
    forward_default_kwargs = (("num_inference_steps", 25),)
    num_inference_steps = 25

    def get_scheduler_config(self, **kwargs):
        config = {
            "num_train_timesteps": 1000,
            "beta_start": 0.0001,
            "beta_end": 0.02,
            "beta_schedule": "linear",
            "solver_order": 2,
            "prediction_type": "epsilon",
            "thresholding": False,
            "sample_max_value": 1.0,
            "lower_order_final": False,
            "final_sigmas_type": "sigma_min",
        }

        config.update(**kwargs)
        return config

    def test_timesteps(self):
        for timesteps in [25, 50, 100, 999, 1000]:
            self.check_over_configs(num_train_timesteps=timesteps)

    def test_switch(self):
        # make sure that iterating over schedulers with same config names gives same results
        # for defaults
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)
        sample = self.full_loop(scheduler)

        scheduler = DPMSolverMultistepScheduler.from_config(scheduler.config)
        scheduler.set_timesteps(self.num_inference_steps)
        new_sample = self.full_loop(scheduler)

        assert torch.equal(sample, new_sample)

    def test_thresholding(self):
        self.check_over_configs(thresholding=False)
        for order in [1, 2]:
            for threshold in [0.5, 1.0, 2.0]:
                for prediction_type in ["epsilon", "sample"]:
                    self.check_over_configs(
                        thresholding=True,
                        prediction_type=prediction_type,
                        sample_max_value=threshold,
                        solver_order=order,
                    )

    def test_prediction_type(self):
        for prediction_type in ["epsilon", "v_prediction", "sample"]:
            self.check_over_configs(prediction_type=prediction_type)

    def test_solver_order_and_type(self):
        for order in [1, 2]:
            for prediction_type in ["epsilon", "sample", "v_prediction"]:
                for lower_order_final in [True, False]:
                    scheduler = self.scheduler_classes[0](
                        **self.get_scheduler_config(
                            solver_order=order,
                            prediction_type=prediction_type,
                            lower_order_final=lower_order_final,
                        )
                    )
                    scheduler.set_timesteps(self.num_inference_steps)
                    sample = self.full_loop(scheduler)
                    assert not torch.isnan(sample).any(), "Samples have nan numbers"

    def test_unsupported_solver_order(self):
        with self.assertRaises(NotImplementedError):
            self.scheduler_classes[0](**self.get_scheduler_config(solver_order=3))

    def test_lower_order_final(self):
        self.check_over_configs(lower_order_final=True)
        self.check_over_configs(lower_order_final=False)

    def test_final_sigmas_type(self):
        self.check_over_configs(final_sigmas_type="sigma_min")
        self.check_over_configs(final_sigmas_type="zero")

        scheduler = self.scheduler_classes[0](**self.get_scheduler_config(final_sigmas_type="zero"))
        scheduler.set_timesteps(self.num_inference_steps)
        assert scheduler.sigmas[-1] == 0.0

    def test_timesteps_are_integer(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)
        assert scheduler.timesteps.dtype == torch.int64

    def test_model_outputs_history(self):
        for order in [1, 2]:
            scheduler = self.scheduler_classes[0](**self.get_scheduler_config(solver_order=order))
            scheduler.set_timesteps(self.num_inference_steps)
            model = self.dummy_model()
            sample = self.dummy_sample_deter

            for i, t in enumerate(scheduler.timesteps):
                output = scheduler.step(model(sample, t), t, sample)
                sample = output.prev_sample

                assert len(scheduler.model_outputs) == min(i + 1, order)
                # the newest entry is the data prediction of this step
                assert torch.equal(scheduler.model_outputs[-1], output.pred_original_sample)

    def test_add_noise_uses_alpha_and_sigma(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        scheduler.set_timesteps(self.num_inference_steps)

        sample = self.dummy_sample_deter
        noise = torch.ones_like(sample)
        noised = scheduler.add_noise(sample, noise, scheduler.timesteps[3:4])

        sigma = scheduler.sigmas[3]
        alpha_t = 1 / (sigma**2 + 1) ** 0.5
        sigma_t = sigma * alpha_t
        assert torch.allclose(noised, alpha_t * sample + sigma_t, atol=1e-6)

    def test_step_without_set_timesteps(self):
        scheduler = self.scheduler_classes[0](**self.get_scheduler_config())
        sample = self.dummy_sample
        with self.assertRaises(ValueError):
            scheduler.step(0.1 * sample, 999, sample)
