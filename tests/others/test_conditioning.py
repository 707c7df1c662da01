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

from diffusion_sampler import ConditioningInput, ConditioningKind, ModelMixin, MultiConditioning, ShapeMismatchError


class DummyControlNet(ModelMixin):
    def __init__(self, residuals, hidden_size=None):
        super().__init__()
        self.weight = torch.nn.Parameter(torch.ones(1))
        self.residuals = residuals
        self.hidden_size = hidden_size
        self.calls = []

    def forward(self, sample, timestep, encoder_hidden_states=None, controlnet_cond=None, conditioning_scale=1.0):
        self.calls.append((sample.shape, controlnet_cond.shape))
        return {
            key: torch.full((sample.shape[0], *shape), value * conditioning_scale)
            for key, (shape, value) in self.residuals.items()
        }


class DummyAdapter:
    def __init__(self, residuals):
        self.residuals = residuals
        self.num_calls = 0

    def __call__(self, conditioning_image):
        self.num_calls += 1
        return {
            key: torch.full((conditioning_image.shape[0], *shape), value)
            for key, (shape, value) in self.residuals.items()
        }


class MultiConditioningTests(unittest.TestCase):
    def get_sample(self, batch_size=2):
        return torch.zeros(batch_size, 4, 8, 8)

    def get_image(self):
        return torch.zeros(1, 3, 64, 64)

    def test_no_inputs(self):
        conditioning = MultiConditioning()
        assert len(conditioning) == 0
        assert conditioning.compute_residuals(self.get_sample(), torch.tensor(999)) == {}

    def test_controlnets_are_summed(self):
        first = DummyControlNet({"mid_block": ((4, 1, 1), 1.0), "down_block_0": ((4, 8, 8), 2.0)})
        second = DummyControlNet({"mid_block": ((4, 1, 1), 3.0)})
        conditioning = MultiConditioning(
            [ConditioningInput(first, self.get_image()), ConditioningInput(second, self.get_image(), 0.5)]
        )

        residuals = conditioning.compute_residuals(self.get_sample(), torch.tensor(999))

        assert set(residuals.keys()) == {"mid_block", "down_block_0"}
        assert torch.equal(residuals["mid_block"], torch.full((2, 4, 1, 1), 2.5))
        assert torch.equal(residuals["down_block_0"], torch.full((2, 4, 8, 8), 2.0))
        # the conditioning image is expanded to the model batch
        assert first.calls[0] == (torch.Size([2, 4, 8, 8]), torch.Size([2, 3, 64, 64]))

    def test_mismatched_residuals(self):
        first = DummyControlNet({"mid_block": ((4, 1, 1), 1.0)})
        second = DummyControlNet({"mid_block": ((4, 2, 2), 1.0)})
        conditioning = MultiConditioning(
            [ConditioningInput(first, self.get_image()), ConditioningInput(second, self.get_image())]
        )

        with self.assertRaises(ShapeMismatchError):
            conditioning.compute_residuals(self.get_sample(), torch.tensor(999))

    def test_controlnet_wins_over_adapter(self):
        controlnet = DummyControlNet({"mid_block": ((4, 1, 1), 1.0)})
        adapter = DummyAdapter({"mid_block": ((4, 1, 1), 5.0), "down_block_1": ((4, 4, 4), 5.0)})
        conditioning = MultiConditioning(
            [
                ConditioningInput(adapter, self.get_image(), kind="t2i_adapter"),
                ConditioningInput(controlnet, self.get_image()),
            ]
        )

        conditioning.prepare(batch_size=1, do_classifier_free_guidance=True)
        residuals = conditioning.compute_residuals(self.get_sample(), torch.tensor(999))

        assert torch.equal(residuals["mid_block"], torch.ones(2, 4, 1, 1))
        assert torch.equal(residuals["down_block_1"], torch.full((2, 4, 4, 4), 5.0))

    def test_adapters_run_once_per_generation(self):
        adapter = DummyAdapter({"down_block_0": ((4, 8, 8), 1.0)})
        conditioning = MultiConditioning([ConditioningInput(adapter, self.get_image(), 2.0, "t2i_adapter")])

        residuals = conditioning.prepare(batch_size=1, do_classifier_free_guidance=True)
        assert residuals["down_block_0"].shape == (2, 4, 8, 8)
        assert torch.equal(residuals["down_block_0"], torch.full((2, 4, 8, 8), 2.0))

        for t in [999, 500, 1]:
            conditioning.compute_residuals(self.get_sample(), torch.tensor(t))
        assert adapter.num_calls == 1

        conditioning.reset()
        conditioning.compute_residuals(self.get_sample(), torch.tensor(999))
        assert adapter.num_calls == 2

    def test_parallel_matches_sequential(self):
        def build(parallel):
            controlnets = [
                DummyControlNet({"mid_block": ((4, 1, 1), float(i)), f"down_block_{i}": ((4, 8, 8), 1.0)})
                for i in range(4)
            ]
            return MultiConditioning(
                [ConditioningInput(c, self.get_image()) for c in controlnets], parallel=parallel
            )

        sequential = build(False).compute_residuals(self.get_sample(), torch.tensor(999))
        parallel = build(True).compute_residuals(self.get_sample(), torch.tensor(999))

        assert list(sequential.keys()) == list(parallel.keys())
        for key in sequential:
            assert torch.equal(sequential[key], parallel[key])

    def test_invalid_kind(self):
        with self.assertRaises(ValueError):
            ConditioningInput(DummyAdapter({}), self.get_image(), kind="lora")

    def test_kinds(self):
        controlnet = ConditioningInput(DummyControlNet({}), self.get_image())
        adapter = ConditioningInput(DummyAdapter({}), self.get_image(), kind="t2i_adapter")
        conditioning = MultiConditioning([controlnet, adapter])

        assert controlnet.kind == ConditioningKind.CONTROLNET
        assert conditioning.controlnets == [controlnet]
        assert conditioning.adapters == [adapter]

    def test_hidden_size(self):
        assert ConditioningInput(DummyControlNet({}, hidden_size=768), self.get_image()).hidden_size == 768
        assert ConditioningInput(DummyAdapter({}), self.get_image(), kind="t2i_adapter").hidden_size is None

    def test_unload_resources(self):
        controlnet = DummyControlNet({"mid_block": ((4, 1, 1), 1.0)})
        conditioning = MultiConditioning([ConditioningInput(controlnet, self.get_image())])

        conditioning.unload_resources()
        assert not controlnet.is_loaded

        # residuals load the module again
        conditioning.compute_residuals(self.get_sample(), torch.tensor(999))
        assert controlnet.is_loaded
