# aim_encoder/layout.py
"""Channel-last tensor layout shared by every module in the package.

Images and activations are [batch, height, width, channel]; patch-embedding
kernels are [out, kh, kw, in]. Checkpoints trained with torch.nn.Conv2d store
kernels as [out, in, kh, kw] and are permuted once by ``weights.sanitize``.
"""
from __future__ import annotations
import torch

IMAGE_AXES = ("batch", "height", "width", "channel")
TOKEN_AXES = ("batch", "sequence", "embed")
KERNEL_AXES = ("out", "kh", "kw", "in")
TORCH_KERNEL_AXES = ("out", "in", "kh", "kw")

# [out, in, kh, kw] -> [out, kh, kw, in]
TORCH_TO_RUNTIME_KERNEL = tuple(TORCH_KERNEL_AXES.index(a) for a in KERNEL_AXES)
# [B, H, W, C] <-> [B, C, H, W]
CHANNELS_FIRST = (0, 3, 1, 2)
CHANNELS_LAST = (0, 2, 3, 1)


def to_channels_first(x: torch.Tensor) -> torch.Tensor:
    return x.permute(*CHANNELS_FIRST)


def to_channels_last(x: torch.Tensor) -> torch.Tensor:
    return x.permute(*CHANNELS_LAST)


def check_image(x: torch.Tensor, image_size: int, channels: int) -> None:
    if x.dim() != 4:
        raise ValueError(f"Expected 4D input {list(IMAGE_AXES)}, got {x.dim()}D with shape {tuple(x.shape)}")
    _, h, w, c = x.shape
    if c != channels:
        raise ValueError(f"Expected {channels} channels on the last axis, got {c} (shape {tuple(x.shape)})")
    if h != image_size or w != image_size:
        raise ValueError(f"Expected {image_size}x{image_size} images, got {h}x{w}")


def check_tokens(x: torch.Tensor, dim: int) -> None:
    if x.dim() != 3:
        raise ValueError(f"Expected 3D input {list(TOKEN_AXES)}, got {x.dim()}D with shape {tuple(x.shape)}")
    if x.size(-1) != dim:
        raise ValueError(f"Input dimension ({x.size(-1)}) doesn't match expected ({dim})")
