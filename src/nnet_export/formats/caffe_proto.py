"""Subset of the Caffe protobuf schema needed to read trained models.

Only the messages the nnet converter touches are declared. Field numbers
follow the upstream ``caffe.proto`` so genuine ``.caffemodel`` files decode;
fields outside the subset survive as unknown fields and are written back
untouched when a model is re-serialised.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from .nnet_common import AuxiliaryTensorError, ModelFormatError

_Field = descriptor_pb2.FieldDescriptorProto

_OPTIONAL = _Field.LABEL_OPTIONAL
_REPEATED = _Field.LABEL_REPEATED

PROTO_PACKAGE = "caffe"
PROTO_FILENAME = "nnet_export/caffe_subset.proto"


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    *,
    label: int = _OPTIONAL,
    type_name: str | None = None,
    default: str | None = None,
    packed: bool = False,
) -> None:
    entry = message.field.add()
    entry.name = name
    entry.number = number
    entry.type = field_type
    entry.label = label
    if type_name is not None:
        entry.type_name = f".{PROTO_PACKAGE}.{type_name}"
    if default is not None:
        entry.default_value = default
    if packed:
        entry.options.packed = True


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto()
    proto.name = PROTO_FILENAME
    proto.package = PROTO_PACKAGE
    proto.syntax = "proto2"

    shape = proto.message_type.add()
    shape.name = "BlobShape"
    _add_field(shape, "dim", 1, _Field.TYPE_INT64, label=_REPEATED, packed=True)

    blob = proto.message_type.add()
    blob.name = "BlobProto"
    _add_field(blob, "num", 1, _Field.TYPE_INT32, default="0")
    _add_field(blob, "channels", 2, _Field.TYPE_INT32, default="0")
    _add_field(blob, "height", 3, _Field.TYPE_INT32, default="0")
    _add_field(blob, "width", 4, _Field.TYPE_INT32, default="0")
    _add_field(blob, "data", 5, _Field.TYPE_FLOAT, label=_REPEATED, packed=True)
    _add_field(blob, "diff", 6, _Field.TYPE_FLOAT, label=_REPEATED, packed=True)
    _add_field(blob, "shape", 7, _Field.TYPE_MESSAGE, type_name="BlobShape")

    transform = proto.message_type.add()
    transform.name = "TransformationParameter"
    _add_field(transform, "scale", 1, _Field.TYPE_FLOAT, default="1")
    _add_field(transform, "mirror", 2, _Field.TYPE_BOOL, default="false")
    _add_field(transform, "crop_size", 3, _Field.TYPE_UINT32, default="0")
    _add_field(transform, "mean_file", 4, _Field.TYPE_STRING)
    _add_field(transform, "mean_value", 5, _Field.TYPE_FLOAT, label=_REPEATED)

    convolution = proto.message_type.add()
    convolution.name = "ConvolutionParameter"
    _add_field(convolution, "num_output", 1, _Field.TYPE_UINT32)
    _add_field(convolution, "bias_term", 2, _Field.TYPE_BOOL, default="true")
    _add_field(convolution, "pad", 3, _Field.TYPE_UINT32, default="0")
    _add_field(convolution, "kernel_size", 4, _Field.TYPE_UINT32)
    _add_field(convolution, "group", 5, _Field.TYPE_UINT32, default="1")
    _add_field(convolution, "stride", 6, _Field.TYPE_UINT32, default="1")

    pooling = proto.message_type.add()
    pooling.name = "PoolingParameter"
    pool_method = pooling.enum_type.add()
    pool_method.name = "PoolMethod"
    for number, name in enumerate(("MAX", "AVE", "STOCHASTIC")):
        value = pool_method.value.add()
        value.name = name
        value.number = number
    _add_field(
        pooling,
        "pool",
        1,
        _Field.TYPE_ENUM,
        type_name="PoolingParameter.PoolMethod",
        default="MAX",
    )
    _add_field(pooling, "kernel_size", 2, _Field.TYPE_UINT32)
    _add_field(pooling, "stride", 3, _Field.TYPE_UINT32, default="1")
    _add_field(pooling, "pad", 4, _Field.TYPE_UINT32, default="0")
    _add_field(pooling, "global_pooling", 12, _Field.TYPE_BOOL, default="false")

    layer = proto.message_type.add()
    layer.name = "LayerParameter"
    _add_field(layer, "name", 1, _Field.TYPE_STRING)
    _add_field(layer, "type", 2, _Field.TYPE_STRING)
    _add_field(layer, "bottom", 3, _Field.TYPE_STRING, label=_REPEATED)
    _add_field(layer, "top", 4, _Field.TYPE_STRING, label=_REPEATED)
    _add_field(layer, "blobs", 7, _Field.TYPE_MESSAGE, label=_REPEATED, type_name="BlobProto")
    _add_field(
        layer, "transform_param", 100, _Field.TYPE_MESSAGE, type_name="TransformationParameter"
    )
    _add_field(
        layer, "convolution_param", 106, _Field.TYPE_MESSAGE, type_name="ConvolutionParameter"
    )
    _add_field(layer, "pooling_param", 121, _Field.TYPE_MESSAGE, type_name="PoolingParameter")

    net = proto.message_type.add()
    net.name = "NetParameter"
    _add_field(net, "name", 1, _Field.TYPE_STRING)
    _add_field(net, "layer", 100, _Field.TYPE_MESSAGE, label=_REPEATED, type_name="LayerParameter")
    return proto


# A private pool keeps these declarations from clashing with a generated
# ``caffe_pb2`` module imported by the same process.
_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())


def _message_class(name: str) -> Any:
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PROTO_PACKAGE}.{name}"))


BlobShape = _message_class("BlobShape")
BlobProto = _message_class("BlobProto")
TransformationParameter = _message_class("TransformationParameter")
ConvolutionParameter = _message_class("ConvolutionParameter")
PoolingParameter = _message_class("PoolingParameter")
LayerParameter = _message_class("LayerParameter")
NetParameter = _message_class("NetParameter")


def parse_net(data: bytes, *, origin: str = "<bytes>") -> Any:
    """Decode a serialised ``NetParameter``."""

    net = NetParameter()
    try:
        net.ParseFromString(data)
    except DecodeError as exc:
        raise ModelFormatError(f"Unable to decode Caffe model {origin}: {exc}") from exc
    return net


def parse_blob(data: bytes, *, origin: str = "<bytes>") -> Any:
    """Decode a serialised ``BlobProto``."""

    blob = BlobProto()
    try:
        blob.ParseFromString(data)
    except DecodeError as exc:
        raise AuxiliaryTensorError(f"Unable to decode tensor blob {origin}: {exc}") from exc
    return blob


def read_net(path: Path) -> Any:
    with path.open("rb") as fh:
        payload = fh.read()
    return parse_net(payload, origin=str(path))


def read_blob(path: Path) -> Any:
    with path.open("rb") as fh:
        payload = fh.read()
    return parse_blob(payload, origin=str(path))


__all__ = [
    "BlobProto",
    "BlobShape",
    "ConvolutionParameter",
    "LayerParameter",
    "NetParameter",
    "PoolingParameter",
    "TransformationParameter",
    "parse_blob",
    "parse_net",
    "read_blob",
    "read_net",
]
