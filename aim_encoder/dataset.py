# aim_encoder/dataset.py
from __future__ import annotations
from pathlib import Path
from typing import Sequence
import pandas as pd
from PIL import Image
import torch
from torch.utils.data import Dataset
from torchvision import transforms as T
from torchvision.transforms.functional import InterpolationMode

IMG_EXTS = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


class ToChannelsLast:
    """[C, H, W] -> [H, W, C]"""

    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        return x.permute(1, 2, 0).contiguous()


def build_image_transform(size=224, mean=IMAGENET_MEAN, std=IMAGENET_STD):
    return T.Compose([
        T.Resize(size, interpolation=InterpolationMode.BICUBIC),
        T.CenterCrop(size),
        T.ToTensor(),
        T.Normalize(mean, std),
        ToChannelsLast(),
    ])


def preprocess_pixels(pixels: torch.Tensor, image_size: int = 224,
                      mean: Sequence[float] = IMAGENET_MEAN, std: Sequence[float] = IMAGENET_STD) -> torch.Tensor:
    """Normalize already-resized [S, S, 3] pixels in [0, 1]; returns [1, S, S, 3]. Does not resize."""
    if pixels.dim() != 3 or pixels.size(-1) != 3:
        raise ValueError(f"Expected [H, W, 3] input, got shape {tuple(pixels.shape)}")
    if not pixels.is_floating_point():
        raise ValueError(f"Expected floating point pixels in [0, 1], got {pixels.dtype}")
    h, w, _ = pixels.shape
    if h != image_size or w != image_size:
        raise ValueError(f"Input size [{h}, {w}] must match expected [{image_size}, {image_size}]; "
                         "this function does not resize")
    mean = torch.tensor(mean, dtype=pixels.dtype, device=pixels.device)
    std = torch.tensor(std, dtype=pixels.dtype, device=pixels.device)
    return ((pixels - mean) / std).unsqueeze(0)


class ImageFolder(Dataset):
    def __init__(self, root, transform=None, image_size=224):
        self.root = Path(root)
        self.t = transform or build_image_transform(size=image_size)
        self.files = sorted(p for p in self.root.rglob("*") if p.suffix.lower() in IMG_EXTS)

    def __len__(self): return len(self.files)

    def __getitem__(self, i):
        p = self.files[i]
        img = Image.open(p).convert("RGB")
        return {"image": self.t(img), "path": str(p)}


class ImageCsv(Dataset):
    """CSV: image_path[, ...]"""
    def __init__(self, csv_path, img_root, transform=None, image_size=224):
        self.df = pd.read_csv(csv_path)
        if "image_path" not in self.df.columns:
            raise ValueError(f"{csv_path} has no 'image_path' column")
        self.root = Path(img_root)
        self.t = transform or build_image_transform(size=image_size)

    def __len__(self): return len(self.df)

    def __getitem__(self, i):
        r = self.df.iloc[i]
        p = self.root / r["image_path"]
        img = Image.open(p).convert("RGB")
        return {"image": self.t(img), "path": str(p)}


def collate_images(batch):
    images = torch.stack([b["image"] for b in batch])  # (B,S,S,3)
    paths = [b["path"] for b in batch]
    return {"images": images, "paths": paths}
