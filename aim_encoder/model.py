# aim_encoder/model.py
from __future__ import annotations
import logging
from typing import Dict, Optional, Sequence, Union
from PIL import Image
import torch
import torch.nn as nn
from .config import AIMv2Config, PositionEmbeddingType
from .dataset import build_image_transform
from .layers import TransformerBlock
from .layout import check_image
from .patch_embed import PatchEmbed
from .pos_embed import sincos_position_embedding

logger = logging.getLogger(__name__)


class AIMv2Encoder(nn.Module):
    """AIMv2 vision encoder (inference only).

    Input images are channel-last ``[B, S, S, C]``. ``forward`` returns the
    normalized token sequence ``[B, N+1, D]`` with the CLS token at index 0.
    """

    def __init__(self, config: AIMv2Config):
        super().__init__()
        self.config = config
        width = config.hidden_size

        self.patch_embed = PatchEmbed(
            image_size=config.image_size,
            patch_size=config.patch_size,
            in_channels=config.num_channels,
            embed_dim=width,
        )

        self.cls_token = nn.Parameter(torch.empty(1, 1, width))

        if config.position_embedding_type == PositionEmbeddingType.ABSOLUTE:
            self.pos_embed = nn.Parameter(torch.empty(1, config.sequence_length, width))
            self.register_buffer("sincos_cache", None, persistent=False)
        else:
            self.register_parameter("pos_embed", None)
            # computed once here, reused by every forward call
            self.register_buffer(
                "sincos_cache",
                sincos_position_embedding(config.num_patches, width),
                persistent=False,
            )

        self.blocks = nn.ModuleList([
            TransformerBlock(
                width,
                config.num_attention_heads,
                config.intermediate_size,
                qkv_bias=config.qkv_bias,
                mlp_bias=config.mlp_bias,
                eps=config.layer_norm_eps,
            )
            for _ in range(config.num_hidden_layers)
        ])
        self.norm = nn.LayerNorm(width, eps=config.layer_norm_eps)

        self._init_params()

    def _init_params(self):
        # a zero CLS token would pass through the residual stream unchanged
        nn.init.normal_(self.cls_token, std=0.02)
        if self.pos_embed is not None:
            nn.init.normal_(self.pos_embed, std=0.02)

    @property
    def position_embedding(self) -> torch.Tensor:
        return self.pos_embed if self.pos_embed is not None else self.sincos_cache

    @property
    def info(self) -> str:
        return self.config.summary()

    def forward(self, images: torch.Tensor, attn_mask: Optional[torch.Tensor] = None) -> torch.Tensor:
        check_image(images, self.config.image_size, self.config.num_channels)

        x = self.patch_embed(images)                          # [B, N, D]
        cls = self.cls_token.expand(x.size(0), -1, -1)
        x = torch.cat([cls, x], dim=1)                        # [B, N+1, D]
        x = x + self.position_embedding.to(dtype=x.dtype)

        for block in self.blocks:
            x = block(x, attn_mask)

        return self.norm(x)

    def pooled(self, images: torch.Tensor) -> torch.Tensor:
        """CLS feature [B, D]."""
        return self(images)[:, 0, :]

    def patches(self, images: torch.Tensor) -> torch.Tensor:
        """Patch features [B, N, D] (CLS excluded)."""
        return self(images)[:, 1:, :]

    def encode(self, images: torch.Tensor) -> Dict[str, torch.Tensor]:
        # one forward pass, all three views
        x = self(images)
        return {"last_hidden_state": x, "pooled": x[:, 0, :], "patches": x[:, 1:, :]}

    def encode_image(self, images: Union[Image.Image, Sequence[Image.Image]]) -> Dict[str, torch.Tensor]:
        """Resize, crop and normalize PIL image(s), then ``encode`` them as one batch."""
        if isinstance(images, Image.Image):
            images = [images]
        transform = build_image_transform(self.config.image_size)
        batch = torch.stack([transform(img.convert("RGB")) for img in images])
        ref = self.cls_token
        return self.encode(batch.to(device=ref.device, dtype=ref.dtype))


def build_encoder(config: AIMv2Config) -> AIMv2Encoder:
    model = AIMv2Encoder(config)
    model.requires_grad_(False)
    model.eval()
    logger.debug("Built encoder %s (%d layers, %d patches, %s position embedding)",
                 config.model_type, config.num_hidden_layers, config.num_patches,
                 config.position_embedding_type.value)
    return model
