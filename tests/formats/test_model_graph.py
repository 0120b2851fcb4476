from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
for entry in (ROOT, SRC):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from nnet_export.formats import model_graph
from nnet_export.formats.nnet_common import LayerKind, UnsupportedLayerError
from tests.caffe_fixtures import (
    convolution_layer,
    data_layer,
    inner_product_layer,
    lenet_like_net,
    make_layer,
    make_net,
    pooling_layer,
)


def test_from_proto_preserves_order_and_kinds() -> None:
    graph = model_graph.ModelGraph.from_proto(lenet_like_net())

    assert graph.name == "lenet"
    assert len(graph) == 7
    assert [layer.kind for layer in graph.layers] == [
        LayerKind.DATA,
        LayerKind.CONVOLUTION,
        LayerKind.POOLING,
        LayerKind.INNER_PRODUCT,
        LayerKind.RELU,
        LayerKind.DROPOUT,
        LayerKind.SOFTMAX_WITH_LOSS,
    ]
    assert [layer.index for layer in graph.layers] == list(range(7))


def test_from_proto_copies_blobs_as_float32() -> None:
    graph = model_graph.ModelGraph.from_proto(make_net(inner_product_layer()))

    weights, bias = graph.layers[0].blobs
    assert weights.data.dtype == np.float32
    assert weights.data.tolist() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    assert weights.shape == (6,)
    assert bias.count == 2


def test_transform_params_track_presence() -> None:
    graph = model_graph.ModelGraph.from_proto(
        make_net(
            data_layer("bare", with_transform=False),
            data_layer("empty"),
            data_layer("full", scale=0.5, mirror=False, crop_size=24, mean_values=[1.0]),
        )
    )

    bare, empty, full = graph.layers
    assert bare.transform is None
    assert empty.transform == model_graph.TransformParams()
    assert full.transform == model_graph.TransformParams(
        scale=0.5, mirror=False, crop_size=24, mean_values=(1.0,), mean_file=None
    )


def test_mean_file_and_mean_values_are_both_kept(caplog) -> None:
    net = make_net(data_layer(mean_values=[1.0, 2.0, 3.0], mean_file="mean.binaryproto"))

    with caplog.at_level(logging.WARNING, logger="nnet_export.formats.model_graph"):
        graph = model_graph.ModelGraph.from_proto(net)

    transform = graph.layers[0].transform
    assert transform.mean_file == "mean.binaryproto"
    assert transform.mean_values == (1.0, 2.0, 3.0)
    assert "both mean_file and mean_value" in caplog.text


def test_convolution_and_pooling_params_use_defaults() -> None:
    net = make_net(
        make_layer("conv_default", "Convolution"),
        convolution_layer(num_output=4, kernel_size=5, pad=2),
        make_layer("pool_default", "Pooling"),
        pooling_layer(pool=1, kernel_size=3, stride=2),
    )

    conv_default, conv, pool_default, pool = model_graph.ModelGraph.from_proto(net).layers

    assert conv_default.convolution == model_graph.ConvolutionParams()
    assert conv.convolution == model_graph.ConvolutionParams(num_output=4, kernel_size=5, pad=2)
    assert pool_default.pooling == model_graph.PoolingParams()
    assert pool.pooling.pool == model_graph.PoolMethod.AVE
    assert pool.pooling.kernel_size == 3
    assert conv.transform is None and conv.pooling is None


def test_unknown_layer_type_is_rejected_at_ingestion() -> None:
    net = make_net(data_layer(), make_layer("acc", "Accuracy"))

    with pytest.raises(UnsupportedLayerError) as excinfo:
        model_graph.ModelGraph.from_proto(net)

    assert excinfo.value.layer_index == 1
    assert excinfo.value.layer_name == "acc"


def test_graph_trim_keeps_suffix_and_reindexes() -> None:
    graph = model_graph.ModelGraph.from_proto(lenet_like_net())

    trimmed = graph.trim(3)

    assert [layer.name for layer in trimmed.layers] == ["ip1", "relu1", "drop1", "loss"]
    assert [layer.index for layer in trimmed.layers] == [0, 1, 2, 3]
    assert len(graph) == 7


@pytest.mark.parametrize("skip, expected", [(0, 7), (7, 0), (12, 0)])
def test_graph_trim_bounds(skip: int, expected: int) -> None:
    graph = model_graph.ModelGraph.from_proto(lenet_like_net())

    assert len(graph.trim(skip)) == expected


def test_trim_rejects_negative_counts() -> None:
    with pytest.raises(ValueError, match="non-negative"):
        model_graph.trim_layers([1, 2, 3], -1)


def test_trim_net_preserves_other_fields(caplog) -> None:
    net = make_net(make_layer("acc", "Accuracy"), inner_product_layer(), name="partial")

    with caplog.at_level(logging.INFO, logger="nnet_export.formats.model_graph"):
        trimmed = model_graph.trim_net(net, 1)

    assert trimmed.name == "partial"
    assert [layer.type for layer in trimmed.layer] == ["InnerProduct"]
    assert list(trimmed.layer[0].blobs[0].data) == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    assert len(net.layer) == 2
    assert "Skipping layer type: Accuracy" in caplog.text
    assert "Adding layer type: InnerProduct" in caplog.text
