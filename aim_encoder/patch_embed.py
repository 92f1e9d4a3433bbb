# aim_encoder/patch_embed.py
from __future__ import annotations
import torch
import torch.nn as nn
import torch.nn.functional as F
from .layout import to_channels_first, to_channels_last


class ChannelLastConv2d(nn.Module):
    """Conv2d over [B, H, W, C] inputs with its kernel stored as [out, kh, kw, in]."""

    def __init__(self, in_channels: int, out_channels: int, kernel_size: int, stride: int, bias: bool = True):
        super().__init__()
        self.stride = stride
        self.weight = nn.Parameter(torch.empty(out_channels, kernel_size, kernel_size, in_channels))
        if bias:
            self.bias = nn.Parameter(torch.zeros(out_channels))
        else:
            self.register_parameter("bias", None)
        # same fan-in init as nn.Conv2d
        nn.init.kaiming_uniform_(self.weight, a=5 ** 0.5)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        # torch kernels are [out, in, kh, kw]; the permuted views cost no copy
        weight = self.weight.permute(0, 3, 1, 2)
        y = F.conv2d(to_channels_first(x), weight, self.bias, stride=self.stride)
        return to_channels_last(y)


class PatchEmbed(nn.Module):
    """[B, S, S, C] -> [B, (S/P)^2, D] with a stride-P convolution."""

    def __init__(self, image_size: int = 224, patch_size: int = 14, in_channels: int = 3, embed_dim: int = 768):
        super().__init__()
        if image_size % patch_size != 0:
            raise ValueError(f"image_size ({image_size}) must be divisible by patch_size ({patch_size})")
        self.image_size = image_size
        self.patch_size = patch_size
        self.num_patches = (image_size // patch_size) ** 2

        self.projection = ChannelLastConv2d(in_channels, embed_dim, kernel_size=patch_size, stride=patch_size)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.projection(x)  # [B, S/P, S/P, D]
        B, gh, gw, D = x.shape
        if gh * gw != self.num_patches:
            raise ValueError(f"Patch count mismatch: expected {self.num_patches} patches, got {gh * gw}")
        # channel axis is already last: flattening the grid is a reshape
        return x.reshape(B, gh * gw, D)
