# Numerical core of the classifier, built on NumPy only
# Each trainable component implements forward and backward passes

from .activations import ReLU, Softmax, softmax
from .layers import (
    Embeddings,
    FeedForwardNetwork,
    LayerNorm,
    Linear,
    apply_layer_norm,
    positional_encoding,
)
from .attention import (
    SelfAttention,
    merge_heads,
    multi_head_attention,
    scaled_dot_product_attention,
    split_heads,
)
from .transformer import ClassificationHead, EncoderLayer, Pooling, Transformer
