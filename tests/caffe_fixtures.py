from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

from nnet_export.formats import caffe_proto

# LeNet-style weights small enough to check by hand.
IP_WEIGHTS = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
IP_BIAS = [0.5, 0.5]


def make_layer(name: str, type_name: str, *blobs: Sequence[float]):
    layer = caffe_proto.LayerParameter(name=name, type=type_name)
    for values in blobs:
        blob = layer.blobs.add()
        blob.data.extend(values)
        blob.shape.dim.append(len(values))
    return layer


def data_layer(
    name: str = "data",
    *,
    scale: float | None = None,
    mirror: bool | None = None,
    crop_size: int | None = None,
    mean_values: Iterable[float] = (),
    mean_file: str | None = None,
    with_transform: bool = True,
):
    layer = make_layer(name, "Data")
    if not with_transform:
        return layer
    param = layer.transform_param
    param.SetInParent()
    if scale is not None:
        param.scale = scale
    if mirror is not None:
        param.mirror = mirror
    if crop_size is not None:
        param.crop_size = crop_size
    param.mean_value.extend(mean_values)
    if mean_file is not None:
        param.mean_file = mean_file
    return layer


def convolution_layer(
    name: str = "conv1",
    *,
    num_output: int = 2,
    kernel_size: int = 1,
    pad: int = 0,
    group: int | None = None,
    stride: int | None = None,
    channels: int = 1,
):
    weights = [float(i) for i in range(num_output * channels * kernel_size * kernel_size)]
    bias = [0.25] * num_output
    layer = make_layer(name, "Convolution", weights, bias)
    param = layer.convolution_param
    param.num_output = num_output
    param.kernel_size = kernel_size
    param.pad = pad
    if group is not None:
        param.group = group
    if stride is not None:
        param.stride = stride
    return layer


def pooling_layer(name: str = "pool1", *, pool: int = 0, kernel_size: int = 2, stride: int = 2, pad: int = 0):
    layer = make_layer(name, "Pooling")
    param = layer.pooling_param
    param.pool = pool
    param.kernel_size = kernel_size
    param.stride = stride
    param.pad = pad
    return layer


def inner_product_layer(name: str = "ip1", weights=IP_WEIGHTS, bias=IP_BIAS):
    return make_layer(name, "InnerProduct", weights, bias)


def make_net(*layers, name: str = "lenet"):
    net = caffe_proto.NetParameter(name=name)
    for layer in layers:
        net.layer.add().CopyFrom(layer)
    return net


def lenet_like_net():
    return make_net(
        data_layer(scale=0.00390625),
        convolution_layer(),
        pooling_layer(),
        inner_product_layer(),
        make_layer("relu1", "ReLU"),
        make_layer("drop1", "Dropout"),
        make_layer("loss", "SoftmaxWithLoss"),
    )


def write_caffemodel(path: Path, net) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(net.SerializeToString())
    return path


def write_mean_file(path: Path, values: Sequence[float]) -> Path:
    blob = caffe_proto.BlobProto()
    blob.data.extend(values)
    blob.channels = 1
    blob.height = 1
    blob.width = len(values)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(blob.SerializeToString())
    return path
