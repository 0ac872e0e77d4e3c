"""
Content image dataset for style transfer training
"""

from pathlib import Path
from torch.utils.data import Dataset
import torchvision.transforms as transforms
from PIL import Image
import logging

from core.ImageProcessor import ImageProcessor

logger = logging.getLogger(__name__)


class ContentImageDataset(Dataset):
    """Content images from a single directory, cropped to the training size"""

    def __init__(self, content_dir, size=256, transform=None):
        self.content_dir = Path(content_dir)
        self.size = size
        self.transform = transform or get_train_transforms(size)

        if not self.content_dir.is_dir():
            raise ValueError(f"Content directory not found: {self.content_dir}")

        self.content_images = ImageProcessor.list_images(self.content_dir)
        if not self.content_images:
            raise ValueError(f"No content images found in {self.content_dir}")

        logger.info(f"Dataset loaded: {len(self.content_images)} content images at {size}px")

    def __len__(self):
        return len(self.content_images)

    def __getitem__(self, idx):
        content_img = Image.open(self.content_images[idx]).convert('RGB')
        return self.transform(content_img)


def get_train_transforms(size=256):
    """Resize the short side to the training size, then take a random square crop"""
    return transforms.Compose([
        transforms.Resize(size),
        transforms.RandomCrop(size),
        transforms.RandomHorizontalFlip(p=0.5),
        transforms.ToTensor()
    ])


def get_val_transforms(size=256):
    return transforms.Compose([
        transforms.Resize(size),
        transforms.CenterCrop(size),
        transforms.ToTensor()
    ])


def load_style_tensor(style_image, size=256):
    """
    Load the style image as a 1x3xHxW tensor with its short side at the training size.

    :param style_image: Path, bytes or PIL image.
    """
    image = ImageProcessor.load_image(style_image)
    return transforms.Compose([
        transforms.Resize(size),
        transforms.ToTensor()
    ])(image).unsqueeze(0)


def infinite_batches(dataloader):
    """Cycle a DataLoader forever so training can be counted in iterations"""
    while True:
        for batch in dataloader:
            yield batch
