# aim_encoder/pos_embed.py
from __future__ import annotations
import math
import torch


def sincos_position_embedding(num_patches: int, embed_dim: int, temperature: float = 10000.0) -> torch.Tensor:
    """Fixed 2D sin/cos positional embedding for a square patch grid.

    Each patch at grid cell (y, x), taken in row-major order, gets
    ``[sin(y*w), cos(y*w), sin(x*w), cos(x*w)]`` with ``w_k = temperature ** (-k / (D/4))``.
    A zero row is prepended for the CLS slot.

    Returns a float32 tensor of shape [1, num_patches + 1, embed_dim].
    """
    if embed_dim % 4 != 0:
        raise ValueError(f"embed_dim must be divisible by 4 for sincos positional embedding, got {embed_dim}")
    if num_patches <= 0:
        raise ValueError(f"num_patches must be positive, got {num_patches}")
    grid_size = math.isqrt(num_patches)
    if grid_size * grid_size != num_patches:
        raise ValueError(f"num_patches must be a perfect square, got {num_patches}")

    quarter = embed_dim // 4
    omega = torch.arange(quarter, dtype=torch.float32) / quarter
    omega = 1.0 / (temperature ** omega)

    coords = torch.arange(grid_size, dtype=torch.float32)
    ys = coords.repeat_interleave(grid_size)  # y-major
    xs = coords.repeat(grid_size)

    y_out = ys[:, None] * omega[None, :]
    x_out = xs[:, None] * omega[None, :]
    patch_embed = torch.cat([y_out.sin(), y_out.cos(), x_out.sin(), x_out.cos()], dim=1)

    cls_embed = torch.zeros(1, embed_dim, dtype=torch.float32)
    return torch.cat([cls_embed, patch_embed], dim=0).unsqueeze(0)
