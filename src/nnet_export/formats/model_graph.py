"""Immutable in-memory view of a decoded Caffe model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from .nnet_common import LayerKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PoolMethod(IntEnum):
    MAX = 0
    AVE = 1
    STOCHASTIC = 2


@dataclass(frozen=True)
class Blob:
    """Flat float32 weight tensor in row-major order, outer dimension first."""

    data: np.ndarray
    shape: Tuple[int, ...] = ()

    @property
    def count(self) -> int:
        return int(self.data.size)

    @classmethod
    def from_values(cls, values: Sequence[float], shape: Sequence[int] = ()) -> "Blob":
        return cls(data=np.asarray(values, dtype=np.float32).reshape(-1), shape=tuple(shape))


@dataclass(frozen=True)
class TransformParams:
    """Input normalisation metadata attached to a data layer.

    ``mean_file`` and ``mean_values`` should not both be set, but nothing
    rejects that combination; both are carried through to the output.
    """

    scale: Optional[float] = None
    mirror: Optional[bool] = None
    crop_size: Optional[int] = None
    mean_values: Tuple[float, ...] = ()
    mean_file: Optional[str] = None


@dataclass(frozen=True)
class ConvolutionParams:
    num_output: int = 0
    kernel_size: int = 0
    pad: int = 0
    group: int = 1
    stride: int = 1


@dataclass(frozen=True)
class PoolingParams:
    kernel_size: int = 0
    stride: int = 1
    pad: int = 0
    pool: int = PoolMethod.MAX


@dataclass(frozen=True)
class Layer:
    index: int
    name: str
    kind: LayerKind
    blobs: Tuple[Blob, ...] = ()
    transform: Optional[TransformParams] = None
    convolution: Optional[ConvolutionParams] = None
    pooling: Optional[PoolingParams] = None


@dataclass(frozen=True)
class ModelGraph:
    """Ordered layers of a model; order is execution order."""

    layers: Tuple[Layer, ...]
    name: str = ""

    def __len__(self) -> int:
        return len(self.layers)

    def trim(self, layers_to_skip: int) -> "ModelGraph":
        """Return a graph without the first ``layers_to_skip`` layers."""

        kept = trim_layers(self.layers, layers_to_skip)
        for layer in self.layers[: len(self.layers) - len(kept)]:
            logger.debug("Skipping layer %s of type %s", layer.name, layer.kind.type_name)
        return replace(
            self,
            layers=tuple(replace(layer, index=index) for index, layer in enumerate(kept)),
        )

    @classmethod
    def from_proto(cls, net: Any) -> "ModelGraph":
        """Ingest a decoded ``NetParameter``.

        Layer types outside :class:`LayerKind` are rejected here, before any
        byte of output is produced.
        """

        layers = tuple(_layer_from_proto(index, layer) for index, layer in enumerate(net.layer))
        return cls(layers=layers, name=net.name)


def trim_layers(layers: Sequence[T], layers_to_skip: int) -> List[T]:
    """Keep the layers at index >= ``layers_to_skip`` in their original order."""

    if layers_to_skip < 0:
        raise ValueError(f"layers_to_skip must be non-negative, got {layers_to_skip}")
    return list(layers[layers_to_skip:])


def trim_net(net: Any, layers_to_skip: int) -> Any:
    """Return a copy of a ``NetParameter`` without its first layers.

    Every other field of ``net`` (including unknown ones) is preserved.
    """

    kept = trim_layers(net.layer, layers_to_skip)
    for layer in net.layer[: len(net.layer) - len(kept)]:
        logger.info("Skipping layer type: %s", layer.type)
    for layer in kept:
        logger.info("Adding layer type: %s", layer.type)
    trimmed = type(net)()
    trimmed.CopyFrom(net)
    del trimmed.layer[:]
    trimmed.layer.extend(kept)
    return trimmed


def _blob_shape(blob: Any) -> Tuple[int, ...]:
    if blob.HasField("shape"):
        return tuple(int(dim) for dim in blob.shape.dim)
    legacy = (blob.num, blob.channels, blob.height, blob.width)
    if any(legacy):
        return tuple(int(dim) for dim in legacy)
    return (len(blob.data),)


def _blob_from_proto(blob: Any) -> Blob:
    data = np.fromiter(blob.data, dtype=np.float32, count=len(blob.data))
    return Blob(data=data, shape=_blob_shape(blob))


def _transform_from_proto(layer: Any) -> Optional[TransformParams]:
    if not layer.HasField("transform_param"):
        return None
    param = layer.transform_param
    params = TransformParams(
        scale=float(param.scale) if param.HasField("scale") else None,
        mirror=bool(param.mirror) if param.HasField("mirror") else None,
        crop_size=int(param.crop_size) if param.HasField("crop_size") else None,
        mean_values=tuple(float(value) for value in param.mean_value),
        mean_file=param.mean_file if param.HasField("mean_file") else None,
    )
    if params.mean_file is not None and params.mean_values:
        logger.warning(
            "Data layer %s sets both mean_file and mean_value; both will be encoded",
            layer.name,
        )
    return params


def _layer_from_proto(index: int, layer: Any) -> Layer:
    kind = LayerKind.from_type_name(layer.type, layer_index=index, layer_name=layer.name)
    logger.debug("Ingesting layer %s of type %s", layer.name, layer.type)
    transform = None
    convolution = None
    pooling = None
    if kind is LayerKind.DATA:
        transform = _transform_from_proto(layer)
    elif kind is LayerKind.CONVOLUTION:
        param = layer.convolution_param
        convolution = ConvolutionParams(
            num_output=int(param.num_output),
            kernel_size=int(param.kernel_size),
            pad=int(param.pad),
            group=int(param.group),
            stride=int(param.stride),
        )
    elif kind is LayerKind.POOLING:
        param = layer.pooling_param
        pooling = PoolingParams(
            kernel_size=int(param.kernel_size),
            stride=int(param.stride),
            pad=int(param.pad),
            pool=int(param.pool),
        )
    return Layer(
        index=index,
        name=layer.name,
        kind=kind,
        blobs=tuple(_blob_from_proto(blob) for blob in layer.blobs),
        transform=transform,
        convolution=convolution,
        pooling=pooling,
    )


__all__ = [
    "Blob",
    "ConvolutionParams",
    "Layer",
    "ModelGraph",
    "PoolMethod",
    "PoolingParams",
    "TransformParams",
    "trim_layers",
    "trim_net",
]
