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

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import torch

from ..guiders import ClassifierFreeGuidance
from ..image_processor import VaeImageProcessor
from ..models import ConditioningInput, MultiConditioning
from ..schedulers import SchedulerMixin, SchedulerType, get_scheduler_class
from ..utils import (
    DEFAULT_LATENT_CHANNELS,
    DEFAULT_VAE_SCALE_FACTOR,
    EncoderMissingError,
    MissingInputsError,
    ShapeMismatchError,
    RandomGenerator,
    check_broadcastable,
    check_concatenable,
    get_random_generator,
    logging,
    randn_tensor,
)
from ..utils.random_generator import GENERATOR_TYPES
from .inpaint_utils import MaskedLatentBlender, prepare_mask_and_masked_image, resize_mask
from .pipeline_output import LatentDiffusionPipelineOutput
from .pipeline_utils import ComputeConfig, DiffusionPipeline
from .sample_input import SampleInput


logger = logging.get_logger(__name__)  # pylint: disable=invalid-name

EXAMPLE_DOC_STRING = """
    Examples:
        ```py
        >>> from diffusion_sampler import DDIMScheduler, LatentDiffusionPipeline, SampleInput

        >>> pipe = LatentDiffusionPipeline(
        ...     unet=unet, decoder=decoder, scheduler=DDIMScheduler(), text_encoder=text_encoder, encoder=encoder
        ... )
        >>> sample_input = SampleInput(prompt="a photo of an astronaut riding a horse on mars", seed=42)
        >>> image = pipe(sample_input).images[0]
        ```
"""


class LatentDiffusionPipeline(DiffusionPipeline):
    r"""
    Pipeline for text-to-image, image-to-image and inpainting generation with a latent diffusion model, optionally
    steered by ControlNets and T2I-Adapters.

    The heavy models are plain callables, see the argument descriptions for the contract each one has to follow.

    Args:
        unet (`Callable`):
            The noise-prediction network, called as `unet(sample, timestep, encoder_hidden_states=...,
            additional_residuals=..., timestep_cond=..., return_dict=False)` and returning a tuple whose first element
            is the prediction. Its `config` declares `in_channels` and optionally `function`, `hidden_size` and
            `time_cond_proj_dim`.
        decoder (`Callable`):
            Maps a latent to a `B x 3 x H x W` image in [-1, 1].
        scheduler ([`SchedulerMixin`] or `dict`):
            A scheduler or a scheduler config. Only the config is kept; every generation builds a fresh scheduler of
            the type named by [`SampleInput.scheduler`] from it.
        text_encoder (`Callable`, *optional*):
            Maps a list of prompts to their embeddings. Optional when the embeddings are passed to `__call__`.
        encoder (`Callable`, *optional*):
            Maps an image in [-1, 1] to a latent, called as `encoder(image, generator=...)`. Required for
            image-to-image and inpainting.
        controlnets (`List[ConditioningInput]`, *optional*):
            ControlNets and T2I-Adapters. Modules whose `hidden_size` differs from the unet's are dropped.
        image_processor ([`VaeImageProcessor`], *optional*):
            Converts the source image and the output.
        reduce_memory (`bool`, defaults to `False`):
            Unload the resources of each component as soon as a generation no longer needs it.
        parallel_conditioning (`bool`, defaults to `False`):
            Evaluate the ControlNets of a step concurrently.
        compute_config ([`ComputeConfig`], *optional*):
            The device and dtype to compute in, shared with the caller.
        vae_scale_factor (`int`, defaults to 8):
            Downscale factor between pixel space and latent space.
    """

    _optional_components = ["text_encoder", "encoder"]

    def __init__(
        self,
        unet: Callable,
        decoder: Callable,
        scheduler: Union[SchedulerMixin, Dict[str, Any]],
        text_encoder: Optional[Callable] = None,
        encoder: Optional[Callable] = None,
        controlnets: Optional[List[ConditioningInput]] = None,
        image_processor: Optional[VaeImageProcessor] = None,
        reduce_memory: bool = False,
        parallel_conditioning: bool = False,
        compute_config: Optional[ComputeConfig] = None,
        vae_scale_factor: int = DEFAULT_VAE_SCALE_FACTOR,
    ):
        super().__init__(compute_config=compute_config, reduce_memory=reduce_memory)

        if isinstance(scheduler, SchedulerMixin):
            scheduler_config = dict(scheduler.config)
        elif isinstance(scheduler, dict):
            scheduler_config = dict(scheduler)
        else:
            raise ValueError(
                f"`scheduler` has to be a `SchedulerMixin` or a config dictionary, but is {type(scheduler)}."
            )
        self.scheduler_config = scheduler_config

        self.register_modules(
            unet=unet,
            decoder=decoder,
            text_encoder=text_encoder,
            encoder=encoder,
            conditioning=MultiConditioning(parallel=parallel_conditioning),
        )
        self.vae_scale_factor = vae_scale_factor
        self.image_processor = image_processor or VaeImageProcessor(vae_scale_factor=vae_scale_factor)
        self.mask_processor = VaeImageProcessor(
            vae_scale_factor=vae_scale_factor, do_normalize=False, do_convert_grayscale=True
        )
        self.set_controlnets(controlnets or [])

    def _unet_config(self, name: str, default=None):
        config = getattr(self.unet, "config", None)
        if isinstance(config, dict):
            return config.get(name, default)
        return getattr(config, name, default)

    @property
    def num_channels_latents(self) -> int:
        return self._unet_config("out_channels", None) or DEFAULT_LATENT_CHANNELS

    @property
    def is_native_inpaint(self) -> bool:
        """Whether the unet was trained for inpainting and takes the mask and masked image latents as extra channels."""
        if self._unet_config("function") == "inpaint":
            return True
        return self._unet_config("in_channels") == 2 * self.num_channels_latents + 1

    @property
    def unet_hidden_size(self) -> Optional[int]:
        hidden_size = self._unet_config("hidden_size")
        if hidden_size is None:
            hidden_size = self._unet_config("cross_attention_dim")
        return hidden_size

    @property
    def controlnets(self) -> List[ConditioningInput]:
        return self.conditioning.inputs

    def set_controlnets(self, controlnets: List[ConditioningInput]) -> None:
        """
        Replaces the conditioning modules. Modules trained against a different hidden size than the unet's are dropped
        with a warning.
        """
        unet_hidden_size = self.unet_hidden_size
        compatible = []
        for controlnet in controlnets:
            hidden_size = controlnet.hidden_size
            if unet_hidden_size is not None and hidden_size is not None and hidden_size != unet_hidden_size:
                logger.warning(
                    f"Ignoring {controlnet.kind.value} {controlnet.model.__class__.__name__}: its hidden size"
                    f" {hidden_size} does not match the hidden size {unet_hidden_size} of the unet."
                )
                continue
            compatible.append(controlnet)
        self.conditioning.inputs = compatible
        self.conditioning.reset()

    def check_inputs(
        self,
        input: SampleInput,
        prompt_embeds: Optional[torch.Tensor] = None,
        negative_prompt_embeds: Optional[torch.Tensor] = None,
    ):
        if input.strength is not None and (input.strength < 0 or input.strength > 1):
            raise ValueError(f"The value of strength should in [0.0, 1.0] but is {input.strength}")

        if input.step_count < 0:
            raise ValueError(f"`step_count` has to be non-negative but is {input.step_count}.")

        if input.guidance_scale < 0:
            raise ValueError(f"`guidance_scale` has to be non-negative but is {input.guidance_scale}.")

        self.image_processor.check_size(input.height, input.width)

        try:
            SchedulerType(input.scheduler)
        except ValueError:
            raise ValueError(
                f"`scheduler` has to be one of {[member.value for member in SchedulerType]}, but is"
                f" {input.scheduler}."
            ) from None

        if input.generator_type not in GENERATOR_TYPES:
            raise ValueError(
                f"`generator_type` has to be one of {list(GENERATOR_TYPES.keys())}, but is {input.generator_type}."
            )

        if input.inpaint_mask is not None and input.init_image is None:
            raise ValueError("An `inpaint_mask` was passed without an `init_image` to inpaint.")

        if input.init_image is not None and input.strength is None:
            logger.warning("An `init_image` was passed without `strength`, it is ignored.")

        if prompt_embeds is None and self.text_encoder is None:
            raise ValueError(
                "The pipeline has no `text_encoder`. Please pass `prompt_embeds` (and `negative_prompt_embeds` when"
                " using classifier free guidance)."
            )

        if prompt_embeds is not None and negative_prompt_embeds is not None:
            if prompt_embeds.shape != negative_prompt_embeds.shape:
                raise ValueError(
                    "`prompt_embeds` and `negative_prompt_embeds` must have the same shape when passed directly, but"
                    f" got: `prompt_embeds` {prompt_embeds.shape} != `negative_prompt_embeds`"
                    f" {negative_prompt_embeds.shape}."
                )

    def check_image_size(self, name: str, image: torch.Tensor, input: SampleInput) -> None:
        """Raises `ShapeMismatchError` unless a preprocessed image or mask has the requested spatial size."""
        size = tuple(image.shape[-2:])
        if size != (input.height, input.width):
            raise ShapeMismatchError(
                f"`{name}` has a spatial size of {size} but the generation requests"
                f" {(input.height, input.width)} (height, width)."
            )

    def encode_prompt(
        self,
        prompt: str,
        negative_prompt: str,
        do_classifier_free_guidance: bool,
        prompt_embeds: Optional[torch.Tensor] = None,
        negative_prompt_embeds: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        r"""
        Encodes the prompt into text encoder hidden states.

        Args:
            prompt (`str`):
                prompt to be encoded
            negative_prompt (`str`):
                The prompt not to guide the image generation. Ignored when not using guidance.
            do_classifier_free_guidance (`bool`):
                whether to use classifier free guidance or not
            prompt_embeds (`torch.Tensor`, *optional*):
                Pre-generated text embeddings. If provided, the text encoder is not called for the prompt.
            negative_prompt_embeds (`torch.Tensor`, *optional*):
                Pre-generated negative text embeddings. If provided, the text encoder is not called for the negative
                prompt.

        Returns:
            `torch.Tensor`: `[negative; positive]` embeddings with classifier free guidance, the positive embeddings
            otherwise.
        """
        needs_encoder = prompt_embeds is None or (do_classifier_free_guidance and negative_prompt_embeds is None)
        if needs_encoder:
            if self.text_encoder is None:
                raise ValueError(
                    "The pipeline has no `text_encoder`, `prompt_embeds` (and `negative_prompt_embeds` for classifier"
                    " free guidance) have to be passed."
                )
            self.load_component(self.text_encoder)

        if prompt_embeds is None:
            prompt_embeds = self.text_encoder([prompt])
        prompt_embeds = prompt_embeds.to(device=self.device, dtype=self.dtype)

        if not do_classifier_free_guidance:
            return prompt_embeds

        if negative_prompt_embeds is None:
            negative_prompt_embeds = self.text_encoder([negative_prompt or ""])
        negative_prompt_embeds = negative_prompt_embeds.to(device=self.device, dtype=self.dtype)

        # For classifier free guidance, we need to do two forward passes.
        # Here we concatenate the unconditional and text embeddings into a single batch
        # to avoid doing two forward passes
        return torch.cat([negative_prompt_embeds, prompt_embeds])

    def prepare_scheduler(self, input: SampleInput) -> SchedulerMixin:
        """Builds the scheduler of one generation and sets its timesteps, truncated by `strength`."""
        scheduler = get_scheduler_class(input.scheduler).from_config(self.scheduler_config)
        strength = input.strength if input.is_image_to_image else 1.0
        scheduler.set_timesteps(
            input.step_count,
            device=self.device,
            strength=strength,
            original_inference_steps=input.original_step_count,
        )
        return scheduler

    def _encode(self, image: torch.Tensor, generator: RandomGenerator) -> torch.Tensor:
        if self.encoder is None:
            raise EncoderMissingError()
        self.load_component(self.encoder)
        image = image.to(device=self.device, dtype=self.dtype)
        return self.encoder(image, generator=generator).to(device=self.device, dtype=self.dtype)

    def prepare_latents(
        self,
        input: SampleInput,
        image: Optional[torch.Tensor],
        scheduler: SchedulerMixin,
        generator: RandomGenerator,
    ) -> Tuple[torch.Tensor, Optional[torch.Tensor], Optional[torch.Tensor]]:
        """
        Returns the initial `(latents, noise, image_latents)`.

        Without a source image the latents are Gaussian noise scaled by the scheduler's `init_noise_sigma`. With a
        source image and `strength >= 1` the same holds and the image is only encoded for blending. With `strength <
        1` the encoded image is noised to the first timestep of the truncated schedule, or returned unchanged when the
        schedule is empty.
        """
        shape = (
            1,
            self.num_channels_latents,
            input.height // self.vae_scale_factor,
            input.width // self.vae_scale_factor,
        )
        init_noise_sigma = float(scheduler.init_noise_sigma)

        if not input.is_image_to_image:
            noise = randn_tensor(shape, generator=generator, device=self.device, dtype=self.dtype)
            return noise * init_noise_sigma, None, None

        if self.encoder is None:
            raise EncoderMissingError()

        image_latents = None
        if not self.is_native_inpaint or input.strength < 1:
            image_latents = self._encode(image, generator)
            check_broadcastable("image_latents", image_latents.shape, shape)

        noise = randn_tensor(shape, generator=generator, device=self.device, dtype=self.dtype)
        if input.strength >= 1:
            latents = noise * init_noise_sigma
        elif len(scheduler.timesteps) == 0:
            latents = image_latents
        else:
            latents = scheduler.add_noise(image_latents, noise, scheduler.timesteps[:1])

        return latents, noise, image_latents

    def prepare_mask_latents(
        self,
        input: SampleInput,
        image: Optional[torch.Tensor],
        mask: Optional[torch.Tensor],
        generator: RandomGenerator,
        do_classifier_free_guidance: bool,
    ) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        """
        Returns `(mask, masked_image_latents)` at latent resolution. `masked_image_latents` is only encoded for
        inpainting networks, which also get both tensors duplicated for classifier free guidance.
        """
        if not input.is_inpainting:
            return None, None

        mask, masked_image = prepare_mask_and_masked_image(image, mask)

        latent_height = input.height // self.vae_scale_factor
        latent_width = input.width // self.vae_scale_factor
        mask = resize_mask(mask, latent_height, latent_width).to(device=self.device, dtype=self.dtype)

        if not self.is_native_inpaint:
            return mask, None

        masked_image_latents = self._encode(masked_image, generator)
        if do_classifier_free_guidance:
            mask = torch.cat([mask] * 2)
            masked_image_latents = torch.cat([masked_image_latents] * 2)
        return mask, masked_image_latents

    def get_guidance_scale_embedding(
        self, w: torch.Tensor, embedding_dim: int = 512, dtype: torch.dtype = torch.float32
    ) -> torch.Tensor:
        """
        See https://github.com/google-research/vdm/blob/dc27b98a554f65cdc654b800da5aa1846545d41b/model_vdm.py#L298

        Args:
            w (`torch.Tensor`):
                Generate embedding vectors with a specified guidance scale to subsequently enrich timestep embeddings.
            embedding_dim (`int`, *optional*, defaults to 512):
                Dimension of the embeddings to generate.
            dtype (`torch.dtype`, *optional*, defaults to `torch.float32`):
                Data type of the generated embeddings.

        Returns:
            `torch.Tensor`: Embedding vectors with shape `(len(w), embedding_dim)`.
        """
        assert len(w.shape) == 1
        w = w * 1000.0

        half_dim = embedding_dim // 2
        emb = torch.log(torch.tensor(10000.0)) / (half_dim - 1)
        emb = torch.exp(torch.arange(half_dim, dtype=dtype) * -emb)
        emb = w.to(dtype)[:, None] * emb[None, :]
        emb = torch.cat([torch.sin(emb), torch.cos(emb)], dim=1)
        if embedding_dim % 2 == 1:  # zero pad
            emb = torch.nn.functional.pad(emb, (0, 1))
        assert emb.shape == (w.shape[0], embedding_dim)
        return emb

    @torch.no_grad()
    def __call__(
        self,
        input: SampleInput,
        callback: Optional[Callable[[int, int, torch.Tensor], bool]] = None,
        prompt_embeds: Optional[torch.Tensor] = None,
        negative_prompt_embeds: Optional[torch.Tensor] = None,
        output_type: str = "pil",
        return_dict: bool = True,
    ) -> Optional[Union[LatentDiffusionPipelineOutput, Tuple]]:
        r"""
        The call function to the pipeline for generation.

        Args:
            input ([`SampleInput`]):
                The generation request.
            callback (`Callable`, *optional*):
                Called after every step as `callback(step, total_steps, latents)` with the current effective latent.
                Returning `False` stops the generation: nothing is decoded and `None` is returned.
            prompt_embeds (`torch.Tensor`, *optional*):
                Pre-generated text embeddings, used instead of encoding `input.prompt`.
            negative_prompt_embeds (`torch.Tensor`, *optional*):
                Pre-generated negative text embeddings, used instead of encoding `input.negative_prompt`.
            output_type (`str`, *optional*, defaults to `"pil"`):
                The output format of the generated image. Choose between `"pil"`, `"np"`, `"pt"` or `"latent"`. With
                `"latent"` the decoder is not called.
            return_dict (`bool`, *optional*, defaults to `True`):
                Whether or not to return a [`LatentDiffusionPipelineOutput`] instead of a plain tuple.

        Examples:

        Returns:
            [`LatentDiffusionPipelineOutput`] or `tuple` or `None`:
                If `return_dict` is `True`, [`LatentDiffusionPipelineOutput`] is returned, otherwise a `tuple` of
                `(images, latents)`. `None` if the callback stopped the generation.
        """
        # 1. Check inputs. Raise error if not correct
        self.check_inputs(input, prompt_embeds, negative_prompt_embeds)

        guider = ClassifierFreeGuidance(
            guidance_scale=input.guidance_scale, guidance_rescale=input.guidance_rescale
        )
        do_classifier_free_guidance = guider.do_classifier_free_guidance
        generator = get_random_generator(input.seed, input.generator_type)

        # 2. Encode input prompt
        prompt_embeds = self.encode_prompt(
            input.prompt,
            input.negative_prompt,
            do_classifier_free_guidance,
            prompt_embeds=prompt_embeds,
            negative_prompt_embeds=negative_prompt_embeds,
        )

        # 3. Prepare timesteps
        scheduler = self.prepare_scheduler(input)
        timesteps = scheduler.timesteps

        # 4. Prepare latent variables
        image = mask = None
        if input.is_image_to_image:
            image = self.image_processor.preprocess(input.init_image)
            self.check_image_size("init_image", image, input)
        if input.is_inpainting:
            mask = self.mask_processor.preprocess(input.inpaint_mask)
            self.check_image_size("inpaint_mask", mask, input)

        latents, noise, image_latents = self.prepare_latents(input, image, scheduler, generator)
        mask, masked_image_latents = self.prepare_mask_latents(
            input, image, mask, generator, do_classifier_free_guidance
        )
        self.maybe_unload_components(self.text_encoder, self.encoder)

        blender = None
        if input.is_inpainting and not self.is_native_inpaint:
            blender = MaskedLatentBlender(scheduler, image_latents, noise, mask)

        # 5. Prepare conditioning
        self.conditioning.reset()
        if len(self.conditioning) > 0:
            self.conditioning.prepare(
                batch_size=latents.shape[0],
                do_classifier_free_guidance=do_classifier_free_guidance,
                device=self.device,
                dtype=self.dtype,
            )

        timestep_cond = None
        time_cond_proj_dim = self._unet_config("time_cond_proj_dim")
        if time_cond_proj_dim is not None:
            model_batch_size = latents.shape[0] * guider.num_conditions
            guidance_scale_tensor = torch.tensor(input.guidance_scale - 1).repeat(model_batch_size)
            timestep_cond = self.get_guidance_scale_embedding(
                guidance_scale_tensor, embedding_dim=time_cond_proj_dim
            ).to(device=self.device, dtype=self.dtype)

        # 6. Denoising loop
        total_steps = len(timesteps)
        effective_latents = latents
        if total_steps > 0:
            self.load_component(self.unet)

        with self.progress_bar(total=total_steps) as progress_bar:
            for i, t in enumerate(timesteps):
                # expand the latents if we are doing classifier free guidance
                latent_model_input = torch.cat([latents] * 2) if do_classifier_free_guidance else latents
                latent_model_input = scheduler.scale_model_input(latent_model_input, t)

                if self.is_native_inpaint:
                    if mask is None or masked_image_latents is None:
                        raise MissingInputsError(
                            "The unet is an inpainting network but no `inpaint_mask` and `init_image` were passed."
                        )
                    # concat latents, mask, masked_image_latents in the channel dimension
                    check_concatenable([latent_model_input, mask, masked_image_latents], dim=1)
                    latent_model_input = torch.cat([latent_model_input, mask, masked_image_latents], dim=1)

                additional_residuals = self.conditioning.compute_residuals(latent_model_input, t, prompt_embeds)

                # predict the noise residual
                noise_pred = self.unet(
                    latent_model_input,
                    t,
                    encoder_hidden_states=prompt_embeds,
                    additional_residuals=additional_residuals,
                    timestep_cond=timestep_cond,
                    return_dict=False,
                )[0]

                # perform guidance
                noise_pred = guider(noise_pred)

                # compute the previous noisy sample x_t -> x_t-1
                latents = scheduler.step(noise_pred, t, latents, generator=generator, return_dict=False)[0]

                if blender is not None:
                    latents = blender(latents, i)
                    effective_latents = latents
                elif len(scheduler.model_outputs) > 0:
                    effective_latents = scheduler.model_outputs[-1]
                else:
                    effective_latents = latents

                progress_bar.update()
                if callback is not None and callback(i, total_steps, effective_latents) is False:
                    logger.info(f"Generation stopped by the callback after step {i + 1} of {total_steps}.")
                    self.maybe_unload_components(self.conditioning, self.unet)
                    return None

        self.maybe_unload_components(self.conditioning, self.unet)

        # 7. Decode
        if output_type == "latent":
            image = effective_latents
        else:
            self.load_component(self.decoder)
            image = self.decoder(effective_latents)
            self.maybe_unload_components(self.decoder)
            image = self.image_processor.postprocess(image, output_type=output_type)

        if not return_dict:
            return (image, effective_latents)

        return LatentDiffusionPipelineOutput(images=image, latents=effective_latents)
