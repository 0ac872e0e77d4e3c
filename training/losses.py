"""
Loss functions for style transfer training
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from torchvision.models import vgg19, VGG19_Weights
import logging

logger = logging.getLogger(__name__)

# Indices of the ReLU outputs in vgg19().features
STYLE_LAYERS = {
    'relu1_1': 1,
    'relu2_1': 6,
    'relu3_1': 11,
    'relu4_1': 20,
}
CONTENT_LAYER = ('relu4_2', 22)


class VGGFeatures(nn.Module):
    """Frozen VGG-19 slice returning the activations the losses need"""

    def __init__(self, pretrained=True):
        super(VGGFeatures, self).__init__()

        weights = VGG19_Weights.IMAGENET1K_V1 if pretrained else None
        vgg = vgg19(weights=weights).features

        last_layer = max(max(STYLE_LAYERS.values()), CONTENT_LAYER[1])
        self.layers = nn.Sequential(*list(vgg.children())[:last_layer + 1])
        self.layers.eval()
        for param in self.layers.parameters():
            param.requires_grad = False

        self.capture = {index: name for name, index in STYLE_LAYERS.items()}
        self.capture[CONTENT_LAYER[1]] = CONTENT_LAYER[0]

        # VGG normalization
        self.register_buffer('mean', torch.tensor([0.485, 0.456, 0.406]).view(1, 3, 1, 1))
        self.register_buffer('std', torch.tensor([0.229, 0.224, 0.225]).view(1, 3, 1, 1))

    def train(self, mode=True):
        # The feature extractor always stays in eval mode
        super(VGGFeatures, self).train(mode)
        self.layers.eval()
        return self

    def forward(self, image):
        x = (image - self.mean) / self.std
        features = {}
        for index, layer in enumerate(self.layers):
            x = layer(x)
            if index in self.capture:
                features[self.capture[index]] = x
        return features


def gram_matrix(features):
    """Gram matrix normalized by feature map size"""
    batch_size, channels, height, width = features.size()
    features = features.view(batch_size, channels, height * width)
    gram = torch.bmm(features, features.transpose(1, 2))
    return gram / (channels * height * width)


def total_variation(image):
    batch_size, channels, height, width = image.size()
    tv_h = torch.abs(image[:, :, 1:, :] - image[:, :, :-1, :])
    tv_w = torch.abs(image[:, :, :, 1:] - image[:, :, :, :-1])
    return (tv_h.sum() + tv_w.sum()) / (batch_size * channels * height * width)


class CombinedLoss(nn.Module):
    """Content + style + total variation loss against one fixed style image"""

    def __init__(self,
                 style_image,
                 content_weight=1.0,
                 style_weight=100.0,
                 tv_weight=1e-4,
                 pretrained=True):
        """
        :param style_image: 1x3xHxW style tensor in [0, 1].
        :param pretrained: Load ImageNet weights for the feature network.
        """
        super(CombinedLoss, self).__init__()

        self.content_weight = content_weight
        self.style_weight = style_weight
        self.tv_weight = tv_weight

        self.features = VGGFeatures(pretrained=pretrained)

        with torch.no_grad():
            style_features = self.features(style_image)
        for name in STYLE_LAYERS:
            self.register_buffer(f'style_gram_{name}', gram_matrix(style_features[name]))

        logger.info(f"Loss weights - Content: {content_weight}, Style: {style_weight}, TV: {tv_weight}")

    def forward(self, pred, content):
        pred_features = self.features(pred)
        with torch.no_grad():
            content_features = self.features(content)

        content_name = CONTENT_LAYER[0]
        content_loss = F.mse_loss(pred_features[content_name], content_features[content_name])

        style_loss = 0
        for name in STYLE_LAYERS:
            pred_gram = gram_matrix(pred_features[name])
            target_gram = getattr(self, f'style_gram_{name}').expand_as(pred_gram)
            style_loss = style_loss + F.mse_loss(pred_gram, target_gram)

        tv_loss = total_variation(pred)

        total_loss = (self.content_weight * content_loss
                      + self.style_weight * style_loss
                      + self.tv_weight * tv_loss)

        return {
            'total': total_loss,
            'content': content_loss,
            'style': style_loss,
            'tv': tv_loss
        }
