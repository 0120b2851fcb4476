from __future__ import annotations

import struct
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from nnet_export.formats import caffe_proto, nnet_common
from nnet_export.tools import nnet_partial
from tests.caffe_fixtures import inner_product_layer, lenet_like_net, make_layer, make_net, write_caffemodel


def test_write_partial_model_keeps_suffix(tmp_path: Path) -> None:
    source = write_caffemodel(tmp_path / "lenet.caffemodel", lenet_like_net())
    output = tmp_path / "partial" / "lenet.caffemodel"

    kept = nnet_partial.write_partial_model(source, output, 3)

    assert kept == 4
    trimmed = caffe_proto.read_net(output)
    assert trimmed.name == "lenet"
    assert [layer.name for layer in trimmed.layer] == ["ip1", "relu1", "drop1", "loss"]
    assert list(trimmed.layer[0].blobs[1].data) == [0.5, 0.5]


def test_write_partial_model_with_zero_skip_is_lossless(tmp_path: Path) -> None:
    source = write_caffemodel(tmp_path / "lenet.caffemodel", lenet_like_net())
    output = tmp_path / "copy.caffemodel"

    nnet_partial.write_partial_model(source, output, 0)

    assert caffe_proto.read_net(output) == caffe_proto.read_net(source)


def test_write_partial_model_rejects_negative_skip(tmp_path: Path) -> None:
    source = write_caffemodel(tmp_path / "lenet.caffemodel", lenet_like_net())

    with pytest.raises(ValueError):
        nnet_partial.write_partial_model(source, tmp_path / "out.caffemodel", -1)


def test_main_trims_and_converts(tmp_path: Path, capsys) -> None:
    net = make_net(make_layer("acc", "Accuracy"), inner_product_layer())
    source = write_caffemodel(tmp_path / "net.caffemodel", net)
    output = tmp_path / "net_partial.caffemodel"
    nnet_output = tmp_path / "net.nnet"

    exit_code = nnet_partial.main(
        [
            "--source",
            str(source),
            "--output",
            str(output),
            "--skip",
            "1",
            "--nnet-output",
            str(nnet_output),
        ]
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert f"Trimmed model with 1 layer(s) written to {output}" in out
    assert "nnet file with 1 layer(s)" in out
    model = nnet_common.load_nnet_file(nnet_output)
    assert model.kinds() == (nnet_common.LayerKind.INNER_PRODUCT,)
    assert nnet_output.read_bytes()[:8] == struct.pack(">ii", 1, 1)


def test_main_reports_unsupported_layers_when_converting(tmp_path: Path, capsys) -> None:
    net = make_net(make_layer("acc", "Accuracy"), inner_product_layer())
    source = write_caffemodel(tmp_path / "net.caffemodel", net)

    exit_code = nnet_partial.main(
        [
            "--source",
            str(source),
            "--output",
            str(tmp_path / "net_partial.caffemodel"),
            "--skip",
            "0",
            "--nnet-output",
            str(tmp_path / "net.nnet"),
        ]
    )

    assert exit_code == 1
    assert "nnet_partial:" in capsys.readouterr().err
    assert not (tmp_path / "net.nnet").exists()


def test_main_reports_missing_source(tmp_path: Path, capsys) -> None:
    exit_code = nnet_partial.main(
        ["--source", str(tmp_path / "absent.caffemodel"), "--output", str(tmp_path / "out"), "--skip", "1"]
    )

    assert exit_code == 1
    assert "absent.caffemodel" in capsys.readouterr().err


@pytest.mark.parametrize("argv", [["--source", "a", "--output", "b"], ["--source", "a", "--output", "b", "--skip", "-2"]])
def test_main_usage_errors(argv) -> None:
    with pytest.raises(SystemExit) as excinfo:
        nnet_partial.main(argv)

    assert excinfo.value.code == 2
