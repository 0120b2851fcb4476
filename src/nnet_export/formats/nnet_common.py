"""Shared nnet format helpers used across the converter and inspection tools."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Dict, Mapping, Optional, Tuple

import numpy as np

# The consuming engine reverses every 4-byte group before decoding, so all
# scalars are stored big-endian.
INT32_STRUCT = struct.Struct(">i")
FLOAT32_STRUCT = struct.Struct(">f")
FLOAT32_DTYPE = np.dtype(">f4")
TEXT_ENCODING = "ascii"
TEXT_FLOAT_FORMAT = ".9g"
# Non-finite tokens as spelled by the consumer's Double.Parse.
TEXT_POSITIVE_INFINITY = "Infinity"
TEXT_NEGATIVE_INFINITY = "-Infinity"
TEXT_NAN = "NaN"

POOL_METHOD_MAX = 0
POOL_METHOD_OTHER = 1


class LayerKind(IntEnum):
    """Closed set of layer kinds understood by the nnet consumer.

    The member value doubles as the kind tag written in front of every
    layer record.
    """

    DATA = 0
    INNER_PRODUCT = 1
    RELU = 2
    SOFTMAX_WITH_LOSS = 3
    CONVOLUTION = 4
    POOLING = 5
    DROPOUT = 6

    @property
    def type_name(self) -> str:
        return _TYPE_NAMES[self]

    @classmethod
    def from_type_name(
        cls,
        type_name: str,
        *,
        layer_index: int | None = None,
        layer_name: str | None = None,
    ) -> "LayerKind":
        try:
            return _KINDS_BY_TYPE_NAME[type_name]
        except KeyError:
            raise UnsupportedLayerError(
                f"Unknown layer type: {type_name!r}",
                layer_index=layer_index,
                layer_name=layer_name,
            ) from None


_TYPE_NAMES: Dict[LayerKind, str] = {
    LayerKind.DATA: "Data",
    LayerKind.INNER_PRODUCT: "InnerProduct",
    LayerKind.RELU: "ReLU",
    LayerKind.SOFTMAX_WITH_LOSS: "SoftmaxWithLoss",
    LayerKind.CONVOLUTION: "Convolution",
    LayerKind.POOLING: "Pooling",
    LayerKind.DROPOUT: "Dropout",
}
_KINDS_BY_TYPE_NAME: Dict[str, LayerKind] = {name: kind for kind, name in _TYPE_NAMES.items()}


# ---------------------------------------------------------------------------
# Errors


class ConversionError(RuntimeError):
    """Raised when a model cannot be encoded into the nnet format."""

    def __init__(
        self,
        message: str,
        *,
        layer_index: int | None = None,
        layer_name: str | None = None,
    ) -> None:
        self.layer_index = layer_index
        self.layer_name = layer_name
        if layer_index is not None:
            label = f"layer {layer_index}"
            if layer_name:
                label += f" ({layer_name!r})"
            message = f"{label}: {message}"
        super().__init__(message)


class UnsupportedLayerError(ConversionError):
    """Raised for layer kinds outside :class:`LayerKind`."""


class TensorCountError(ConversionError):
    """Raised when a layer carries an unexpected number of weight tensors."""


class TensorDimensionError(ConversionError):
    """Raised when weight tensor sizes do not factor into the layer shape."""


class UnsupportedConfigurationError(ConversionError):
    """Raised when a layer requests a configuration the consumer cannot run."""


class AuxiliaryTensorError(ConversionError):
    """Raised when a referenced mean file is missing or unreadable."""


class ModelFormatError(ConversionError):
    """Raised when the source model cannot be decoded."""


class NNetFormatError(RuntimeError):
    """Raised when an nnet payload fails validation while reading."""


# ---------------------------------------------------------------------------
# Reader


@dataclass(frozen=True)
class LayerRecord:
    """One decoded layer record."""

    index: int
    kind: LayerKind
    params: Mapping[str, object] = field(default_factory=dict)
    tensors: Tuple[np.ndarray, ...] = ()

    @property
    def tag(self) -> int:
        return int(self.kind)


@dataclass(frozen=True)
class NNetModel:
    """Layer records decoded from an nnet payload, in file order."""

    layers: Tuple[LayerRecord, ...]

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def kinds(self) -> Tuple[LayerKind, ...]:
        return tuple(record.kind for record in self.layers)


class _BinarySource:
    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def _read(self, size: int) -> bytes:
        raw = self._stream.read(size)
        if len(raw) != size:
            raise NNetFormatError(
                f"nnet payload is truncated: expected {size} bytes, got {len(raw)}"
            )
        return raw

    def read_int(self) -> int:
        return INT32_STRUCT.unpack(self._read(INT32_STRUCT.size))[0]

    def read_float(self) -> float:
        return FLOAT32_STRUCT.unpack(self._read(FLOAT32_STRUCT.size))[0]

    def read_floats(self, count: int) -> np.ndarray:
        raw = self._read(count * FLOAT32_DTYPE.itemsize)
        return np.frombuffer(raw, dtype=FLOAT32_DTYPE).astype(np.float32)

    def at_end(self) -> bool:
        return not self._stream.read(1)


class _TextSource:
    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def _read_token(self) -> str:
        line = self._stream.readline()
        if not line:
            raise NNetFormatError("nnet text payload is truncated")
        return line.decode(TEXT_ENCODING).strip()

    def read_int(self) -> int:
        token = self._read_token()
        try:
            return int(token)
        except ValueError:
            raise NNetFormatError(f"Expected an integer, found {token!r}") from None

    def read_float(self) -> float:
        token = self._read_token()
        try:
            return float(np.float32(float(token)))
        except ValueError:
            raise NNetFormatError(f"Expected a float, found {token!r}") from None

    def read_floats(self, count: int) -> np.ndarray:
        return np.array([self.read_float() for _ in range(count)], dtype=np.float32)

    def at_end(self) -> bool:
        return not self._stream.read().strip()


def _read_count(source, what: str) -> int:
    count = source.read_int()
    if count < 0:
        raise NNetFormatError(f"Negative {what} count: {count}")
    return count


def _read_data_layer(source) -> Tuple[Dict[str, object], Tuple[np.ndarray, ...]]:
    if source.read_int() == 0:
        return {"has_transform": False}, ()
    params: Dict[str, object] = {"has_transform": True}
    params["scale"] = source.read_float() if source.read_int() != 0 else None
    params["mirror"] = source.read_int() != 0
    params["crop_size"] = source.read_int() if source.read_int() != 0 else None
    mean_values = source.read_floats(_read_count(source, "mean value"))
    params["mean_values"] = tuple(float(value) for value in mean_values)
    has_mean_file = source.read_int() != 0
    params["mean_file"] = has_mean_file
    if not has_mean_file:
        return params, ()
    return params, (source.read_floats(_read_count(source, "mean file element")),)


def _read_inner_product_layer(source) -> Tuple[Dict[str, object], Tuple[np.ndarray, ...]]:
    k = _read_count(source, "input dimension")
    n = _read_count(source, "output dimension")
    weights = source.read_floats(k * n)
    bias = source.read_floats(n)
    return {"input_dim": k, "output_dim": n}, (weights, bias)


def _read_convolution_layer(source) -> Tuple[Dict[str, object], Tuple[np.ndarray, ...]]:
    params = {
        "num_output": source.read_int(),
        "kernel_size": source.read_int(),
        "pad": source.read_int(),
    }
    kernels = source.read_floats(_read_count(source, "kernel element"))
    bias = source.read_floats(_read_count(source, "bias element"))
    return params, (kernels, bias)


def _read_pooling_layer(source) -> Tuple[Dict[str, object], Tuple[np.ndarray, ...]]:
    params = {
        "kernel_size": source.read_int(),
        "stride": source.read_int(),
        "pad": source.read_int(),
        "pool_method": source.read_int(),
    }
    return params, ()


def _read_empty_layer(source) -> Tuple[Dict[str, object], Tuple[np.ndarray, ...]]:
    return {}, ()


_LAYER_READERS = {
    LayerKind.DATA: _read_data_layer,
    LayerKind.INNER_PRODUCT: _read_inner_product_layer,
    LayerKind.RELU: _read_empty_layer,
    LayerKind.SOFTMAX_WITH_LOSS: _read_empty_layer,
    LayerKind.CONVOLUTION: _read_convolution_layer,
    LayerKind.POOLING: _read_pooling_layer,
    LayerKind.DROPOUT: _read_empty_layer,
}


def read_nnet(stream: BinaryIO, *, text: bool = False) -> NNetModel:
    """Decode an nnet payload from ``stream``.

    The reader mirrors the record layout written by the converter. Set
    ``text`` for payloads that store one value per line.
    """

    source = _TextSource(stream) if text else _BinarySource(stream)
    layer_count = _read_count(source, "layer")
    records = []
    for index in range(layer_count):
        tag = source.read_int()
        try:
            kind = LayerKind(tag)
        except ValueError:
            raise NNetFormatError(f"Layer {index} has unknown kind tag {tag}") from None
        params, tensors = _LAYER_READERS[kind](source)
        records.append(LayerRecord(index=index, kind=kind, params=params, tensors=tensors))
    if not source.at_end():
        raise NNetFormatError(f"Trailing data after {layer_count} layer records")
    return NNetModel(layers=tuple(records))


def load_nnet_file(path: Path, *, text: Optional[bool] = None) -> NNetModel:
    """Read and validate the nnet payload stored on disk.

    When ``text`` is not given, files with a ``.txt`` suffix are read as the
    text flavour.
    """

    if text is None:
        text = path.suffix.lower() == ".txt"
    with path.open("rb") as fh:
        return read_nnet(fh, text=text)


__all__ = [
    "AuxiliaryTensorError",
    "ConversionError",
    "FLOAT32_DTYPE",
    "FLOAT32_STRUCT",
    "INT32_STRUCT",
    "LayerKind",
    "LayerRecord",
    "ModelFormatError",
    "NNetFormatError",
    "NNetModel",
    "POOL_METHOD_MAX",
    "POOL_METHOD_OTHER",
    "TEXT_ENCODING",
    "TEXT_FLOAT_FORMAT",
    "TEXT_NAN",
    "TEXT_NEGATIVE_INFINITY",
    "TEXT_POSITIVE_INFINITY",
    "TensorCountError",
    "TensorDimensionError",
    "UnsupportedConfigurationError",
    "UnsupportedLayerError",
    "load_nnet_file",
    "read_nnet",
]
