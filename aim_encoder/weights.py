# aim_encoder/weights.py
"""Checkpoint conversion from the PyTorch training layout to the encoder's layout.

``sanitize`` runs once, before binding. Each entry is either kept (key
rewritten, patch kernel permuted) or skipped with a warning; skipping never
raises. The rule tables below are the only place keys and layouts are changed.
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union
import torch
from safetensors.torch import load_file
from .config import AIMv2Config
from .layout import TORCH_TO_RUNTIME_KERNEL
from .model import AIMv2Encoder, build_encoder

logger = logging.getLogger(__name__)

MAX_ELEMENTS = 100_000_000
MAX_NDIM = 4

PATCH_KERNEL_KEY = "patch_embed.projection.weight"
PATCH_KERNEL_ALIASES = ("patchEmbed.projection.weight",)

# removed wherever they occur in a key; the segments don't overlap
STRIP_PREFIXES = ("vision_model.", "encoder.")


class SkipEntry(Exception):
    """Raised by a rule to drop the current entry."""


def _check_ndim(key: str, value: torch.Tensor, max_elements: int) -> None:
    if value.dim() > MAX_NDIM:
        raise SkipEntry(f"unusual ndim: {value.dim()}")


def _check_size(key: str, value: torch.Tensor, max_elements: int) -> None:
    if value.numel() >= max_elements:
        raise SkipEntry(f"excessive size: {value.numel()} elements")


def _strip_prefixes(key: str) -> str:
    for prefix in STRIP_PREFIXES:
        key = key.replace(prefix, "")
    return key


def _canonical_kernel_key(key: str) -> str:
    return PATCH_KERNEL_KEY if key in PATCH_KERNEL_ALIASES else key


def _permute_patch_kernel(value: torch.Tensor) -> torch.Tensor:
    # [out, in, kh, kw] -> [out, kh, kw, in]
    if value.dim() != 4:
        raise SkipEntry(f"Conv2d weight has unexpected ndim: {value.dim()}, expected 4")
    return value.permute(*TORCH_TO_RUNTIME_KERNEL).contiguous()


ENTRY_CHECKS: List[Callable[[str, torch.Tensor, int], None]] = [_check_ndim, _check_size]

KEY_REWRITES: List[Callable[[str], str]] = [_strip_prefixes, _canonical_kernel_key]

# (exact-key match, transform); keys are compared after rewriting
VALUE_TRANSFORMS: List[Tuple[Callable[[str], bool], Callable[[torch.Tensor], torch.Tensor]]] = [
    (lambda key: key == PATCH_KERNEL_KEY, _permute_patch_kernel),
]


def sanitize_entry(key: str, value: torch.Tensor, max_elements: int = MAX_ELEMENTS) -> Tuple[str, torch.Tensor]:
    for check in ENTRY_CHECKS:
        check(key, value, max_elements)

    new_key = key
    for rewrite in KEY_REWRITES:
        new_key = rewrite(new_key)

    for matches, transform in VALUE_TRANSFORMS:
        if matches(new_key):
            value = transform(value)
    return new_key, value


def sanitize(weights: Mapping[str, torch.Tensor], max_elements: int = MAX_ELEMENTS) -> Dict[str, torch.Tensor]:
    """Convert a PyTorch-keyed, channel-first checkpoint dict for ``AIMv2Encoder``."""
    if weights is None:
        raise TypeError("sanitize() expected a weight dictionary, got None")

    sanitized: Dict[str, torch.Tensor] = {}
    skipped: List[str] = []

    for key, value in weights.items():
        try:
            new_key, new_value = sanitize_entry(key, value, max_elements)
        except SkipEntry as e:
            logger.warning("Skipping '%s' with %s", key, e)
            skipped.append(key)
            continue
        # first entry for a key wins
        if new_key in sanitized:
            logger.warning("Skipping '%s': maps to '%s' which is already present", key, new_key)
            skipped.append(key)
            continue
        sanitized[new_key] = new_value

    if skipped:
        logger.info("Skipped %d keys during weight sanitization", len(skipped))
    return sanitized


def load_safetensors(path: Union[str, Path]) -> Dict[str, torch.Tensor]:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Weights file not found: {path}")
    return load_file(str(path))


def load_and_sanitize(path: Union[str, Path], max_elements: int = MAX_ELEMENTS) -> Dict[str, torch.Tensor]:
    return sanitize(load_safetensors(path), max_elements=max_elements)


def load_weights(model: AIMv2Encoder, weights: Mapping[str, torch.Tensor]) -> AIMv2Encoder:
    """Bind sanitized weights. Every model parameter must be present."""
    expected = model.state_dict()

    missing = [k for k in expected if k not in weights]
    if missing:
        raise KeyError(f"Missing required parameters: {missing}")

    unexpected = [k for k in weights if k not in expected]
    for k in unexpected:
        logger.warning("Ignoring unexpected parameter '%s'", k)

    state = {}
    for k, ref in expected.items():
        value = weights[k]
        if tuple(value.shape) != tuple(ref.shape):
            raise ValueError(f"Shape mismatch for '{k}': expected {tuple(ref.shape)}, got {tuple(value.shape)}")
        state[k] = value

    model.load_state_dict(state, strict=True)
    model.requires_grad_(False)
    model.eval()
    return model


def from_pretrained(directory: Union[str, Path], weights_file: str = "model.safetensors",
                    config: Optional[AIMv2Config] = None) -> AIMv2Encoder:
    """Build an encoder from a local directory holding config.json and a safetensors file."""
    directory = Path(directory)
    config = config or AIMv2Config.from_json_file(directory / "config.json")
    model = build_encoder(config)
    weights = load_and_sanitize(directory / weights_file)
    load_weights(model, weights)
    logger.info("Loaded %s from %s", config.model_type, directory)
    return model


def to_torch_layout(state: Mapping[str, torch.Tensor], prefix: str = "vision_model.") -> Dict[str, torch.Tensor]:
    """Inverse of ``sanitize`` for a model state dict: prefixed keys, [out, in, kh, kw] patch kernel."""
    out = {}
    for key, value in state.items():
        if key == PATCH_KERNEL_KEY:
            value = value.permute(0, 3, 1, 2)
        out[prefix + key] = value.contiguous()
    return out
