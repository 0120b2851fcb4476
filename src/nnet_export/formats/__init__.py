"""Model formats understood by nnet-export."""

from .model_graph import Blob, ConvolutionParams, Layer, ModelGraph, PoolingParams, PoolMethod, TransformParams
from .nnet_common import LayerKind, NNetModel, load_nnet_file, read_nnet

__all__ = [
    "Blob",
    "ConvolutionParams",
    "Layer",
    "LayerKind",
    "ModelGraph",
    "NNetModel",
    "PoolMethod",
    "PoolingParams",
    "TransformParams",
    "load_nnet_file",
    "read_nnet",
]
