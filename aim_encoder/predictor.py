# aim_encoder/predictor.py
from __future__ import annotations
import logging
import torch
import pytorch_lightning as pl
from torch.utils.data import DataLoader
from .config import AIMv2Config
from .dataset import ImageCsv, ImageFolder, build_image_transform, collate_images
from .model import AIMv2Encoder, build_encoder

logger = logging.getLogger(__name__)

FEATURES = ("pooled", "patches", "sequence")


class AIMv2FeatureExtractor(pl.LightningModule):
    """Runs an encoder under ``Trainer.predict``. No training loop."""

    def __init__(self, encoder: AIMv2Encoder = None, config: AIMv2Config = None, feature="pooled"):
        super().__init__()
        if feature not in FEATURES:
            raise ValueError(f"Unknown feature {feature!r}, expected one of {FEATURES}")
        if encoder is None:
            if config is None:
                raise ValueError("Either an encoder or a config is required")
            encoder = build_encoder(config)
        self.encoder = encoder
        self.feature = feature

    @property
    def config(self) -> AIMv2Config:
        return self.encoder.config

    def forward(self, images):
        x = self.encoder(images)
        if self.feature == "pooled":
            return x[:, 0, :]
        if self.feature == "patches":
            return x[:, 1:, :]
        return x

    def predict_step(self, batch, batch_idx, dataloader_idx=0):
        feats = self(batch["images"])
        return {"features": feats.cpu(), "paths": batch["paths"]}

    @staticmethod
    def gather(outputs):
        """Merge per-batch ``predict_step`` outputs."""
        if not outputs:
            return {"features": torch.empty(0), "paths": []}
        return {
            "features": torch.cat([o["features"] for o in outputs], dim=0),
            "paths": [p for o in outputs for p in o["paths"]],
        }


class ImageDataModule(pl.LightningDataModule):
    def __init__(self, image_dir=None, image_csv=None, img_root=None,
                 batch_size=32, num_workers=0, image_size=224):
        super().__init__()
        if (image_dir is None) == (image_csv is None):
            raise ValueError("Exactly one of image_dir or image_csv must be given")
        self.image_dir, self.image_csv = image_dir, image_csv
        self.img_root = img_root or "."
        self.batch_size, self.num_workers = batch_size, num_workers
        self.transform = build_image_transform(image_size)

    def setup(self, stage=None):
        if self.image_dir is not None:
            self.ds_predict = ImageFolder(self.image_dir, self.transform)
        else:
            self.ds_predict = ImageCsv(self.image_csv, self.img_root, self.transform)
        logger.info("Predict dataset: %d images", len(self.ds_predict))

    def predict_dataloader(self):
        return DataLoader(self.ds_predict, batch_size=self.batch_size, shuffle=False,
                          num_workers=self.num_workers,
                          persistent_workers=self.num_workers > 0,
                          collate_fn=collate_images)
