# Transformer encoder spam classifier built from scratch on NumPy

__version__ = "0.1.0"

from .config import CONFIG, TransformerConfig, load_config
from .core import Transformer
from .loss import CrossEntropyLoss, cross_entropy_loss, gradients
from .optim import SGD, Adam, build_optimizer
from .train import Trainer
from .evaluate import Predictor, evaluate
