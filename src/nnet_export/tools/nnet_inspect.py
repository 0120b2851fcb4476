"""Decode an nnet file and print its layer records."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional

from ..formats.nnet_common import NNetFormatError, NNetModel, load_nnet_file


def describe(model: NNetModel) -> Dict[str, object]:
    layers = []
    for record in model.layers:
        params = {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in record.params.items()
        }
        layers.append(
            {
                "index": record.index,
                "kind": record.kind.type_name,
                "tag": record.tag,
                "params": params,
                "tensor_sizes": [int(tensor.size) for tensor in record.tensors],
            }
        )
    return {"layer_count": model.layer_count, "layers": layers}


def format_model(model: NNetModel) -> str:
    lines = [f"Layers: {model.layer_count}"]
    for record in model.layers:
        params = ", ".join(f"{key}={value}" for key, value in record.params.items())
        sizes = " ".join(str(tensor.size) for tensor in record.tensors)
        line = f"  {record.index:>3}  {record.kind.type_name:<16} tag={record.tag}"
        if params:
            line += f"  {params}"
        if sizes:
            line += f"  tensors=[{sizes}]"
        lines.append(line)
    return "\n".join(lines)


def _parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print the layer records stored in an nnet file")
    parser.add_argument("path", type=Path, help="nnet file to decode")
    parser.add_argument(
        "--format",
        dest="input_format",
        choices=("auto", "binary", "text"),
        default="auto",
        help="Payload flavour; 'auto' reads .txt files as text",
    )
    parser.add_argument("--summary-format", choices=("table", "json"), default="table")
    return parser.parse_args(None if argv is None else list(argv))


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    text = None if args.input_format == "auto" else args.input_format == "text"
    try:
        model = load_nnet_file(args.path.expanduser(), text=text)
    except (NNetFormatError, OSError) as exc:
        print(f"nnet_inspect: {exc}", file=sys.stderr)
        return 1
    if args.summary_format == "json":
        print(json.dumps(describe(model), indent=2, sort_keys=True))
    else:
        print(format_model(model))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
