#!/usr/bin/env python3
# test_weights.py - checkpoint sanitization, loading and binding

import json
import sys
import tempfile
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parent))

import torch
from safetensors.torch import save_file
from aim_encoder.config import aimv2_tiny
from aim_encoder.model import build_encoder
from aim_encoder.weights import (sanitize, load_safetensors, load_weights, from_pretrained,
                                 to_torch_layout, PATCH_KERNEL_KEY)


def _marked_kernel(out=2, cin=3, kh=4, kw=5):
    # value encodes its own [out, in, kh, kw] coordinate
    o, i, h, w = torch.meshgrid(torch.arange(out), torch.arange(cin), torch.arange(kh), torch.arange(kw),
                                indexing="ij")
    return (1000 * o + 100 * i + 10 * h + w).float()


def test_patch_kernel_permuted():
    kernel = _marked_kernel()
    out = sanitize({"vision_model.patch_embed.projection.weight": kernel})
    k = out[PATCH_KERNEL_KEY]
    assert k.shape == (2, 4, 5, 3)  # [out, kh, kw, in]
    for o, i, h, w in [(0, 0, 0, 0), (1, 2, 3, 4), (0, 1, 2, 3), (1, 0, 3, 1)]:
        assert k[o, h, w, i].item() == 1000 * o + 100 * i + 10 * h + w


def test_alias_key_permuted_and_renamed():
    out = sanitize({"patchEmbed.projection.weight": _marked_kernel()})
    assert list(out) == [PATCH_KERNEL_KEY]
    assert out[PATCH_KERNEL_KEY].shape == (2, 4, 5, 3)


def test_only_exact_key_is_permuted():
    kernel = _marked_kernel()
    weights = {
        "vision_model.patch_embed.projection.weight_ema": kernel,
        "vision_model.encoder.blocks.0.extra.projection.weight": kernel,
        "patch_embed.projection.bias": torch.arange(2.0),
    }
    out = sanitize(weights)
    assert torch.equal(out["patch_embed.projection.weight_ema"], kernel)
    assert torch.equal(out["blocks.0.extra.projection.weight"], kernel)
    assert torch.equal(out["patch_embed.projection.bias"], torch.arange(2.0))


def test_prefix_stripping():
    w = torch.randn(4, 4)
    out = sanitize({
        "vision_model.encoder.blocks.3.attn.qkv.weight": w,
        "encoder.vision_model.norm.weight": torch.ones(4),
        "cls_token": torch.zeros(1, 1, 4),
    })
    assert set(out) == {"blocks.3.attn.qkv.weight", "norm.weight", "cls_token"}
    assert out["blocks.3.attn.qkv.weight"] is w


def test_idempotent_on_sanitized_keys():
    weights = {
        "vision_model.encoder.blocks.0.mlp.fc1.weight": torch.randn(8, 4),
        "vision_model.norm.bias": torch.randn(4),
        "pos_embed": torch.randn(1, 5, 4),
    }
    once = sanitize(weights)
    twice = sanitize(once)
    assert list(once) == list(twice)
    for k in once:
        assert torch.equal(once[k], twice[k])


def test_skipped_entries_are_counted():
    weights = {
        "vision_model.a.weight": torch.zeros(1, 1, 1, 1, 1),            # rank 5
        "vision_model.b.weight": torch.zeros(10, 10),                   # 100 elements, at the ceiling
        "vision_model.patch_embed.projection.weight": torch.zeros(8, 3),  # wrong rank for the kernel
        "vision_model.c.weight": torch.zeros(9, 11),
        "vision_model.d.bias": torch.zeros(3),
    }
    out = sanitize(weights, max_elements=100)
    assert set(out) == {"c.weight", "d.bias"}
    assert len(out) == len(weights) - 3


def test_colliding_keys_keep_first_and_count_as_skipped():
    weights = {
        "vision_model.norm.weight": torch.ones(4),
        "norm.weight": torch.zeros(4),
        "encoder.norm.bias": torch.zeros(4),
    }
    out = sanitize(weights)
    assert set(out) == {"norm.weight", "norm.bias"}
    assert torch.equal(out["norm.weight"], torch.ones(4))
    assert len(out) == len(weights) - 1


def test_none_is_fatal():
    try:
        sanitize(None)
    except TypeError:
        return
    raise AssertionError("sanitize(None) should raise TypeError")


def test_bind_round_trip():
    torch.manual_seed(0)
    cfg = aimv2_tiny()
    src = build_encoder(cfg)
    dst = build_encoder(cfg)

    load_weights(dst, sanitize(to_torch_layout(src.state_dict())))
    images = torch.randn(2, 32, 32, 3)
    with torch.no_grad():
        assert torch.allclose(src(images), dst(images), atol=1e-6)
    assert not dst.training


def test_bind_reports_missing_and_mismatched():
    cfg = aimv2_tiny()
    model = build_encoder(cfg)
    state = dict(model.state_dict())

    partial = {k: v for k, v in state.items() if k != PATCH_KERNEL_KEY}
    try:
        load_weights(model, partial)
    except KeyError as e:
        assert PATCH_KERNEL_KEY in str(e)
    else:
        raise AssertionError("missing patch kernel should raise KeyError")

    bad = dict(state)
    bad[PATCH_KERNEL_KEY] = state[PATCH_KERNEL_KEY].permute(0, 3, 1, 2)  # not sanitized
    try:
        load_weights(model, bad)
    except ValueError:
        pass
    else:
        raise AssertionError("unsanitized kernel should raise ValueError")

    extra = dict(state)
    extra["head.weight"] = torch.zeros(2, 2)
    load_weights(model, extra)


def test_sincos_checkpoint_ignores_learned_pos_embed():
    learned = build_encoder(aimv2_tiny())
    fixed = build_encoder(aimv2_tiny(position_embedding_type="sincos"))
    load_weights(fixed, sanitize(to_torch_layout(learned.state_dict())))
    assert fixed.pos_embed is None


def test_safetensors_from_pretrained():
    torch.manual_seed(0)
    cfg = aimv2_tiny()
    src = build_encoder(cfg)
    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        (tmp / "config.json").write_text(json.dumps(cfg.to_dict()))
        save_file(to_torch_layout(src.state_dict()), str(tmp / "model.safetensors"))

        raw = load_safetensors(tmp / "model.safetensors")
        assert raw["vision_model.patch_embed.projection.weight"].shape == (64, 3, 8, 8)

        model = from_pretrained(tmp)
        images = torch.randn(1, 32, 32, 3)
        with torch.no_grad():
            assert torch.allclose(model(images), src(images), atol=1e-6)

        try:
            load_safetensors(tmp / "missing.safetensors")
        except FileNotFoundError:
            pass
        else:
            raise AssertionError("missing weights file should raise FileNotFoundError")


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"ok  {name}")
