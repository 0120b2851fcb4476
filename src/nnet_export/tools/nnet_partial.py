"""Drop the leading layers of a Caffe model.

The trimmed model is written back as a ``.caffemodel`` with every other
field intact. ``--nnet-output`` additionally converts the trimmed model with
:mod:`nnet_export.tools.nnet_transfer`.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence

from ..formats import caffe_proto
from ..formats.model_graph import trim_net
from ..formats.nnet_common import ConversionError
from . import nnet_transfer

logger = logging.getLogger(__name__)


def write_partial_model(source: Path, output: Path, layers_to_skip: int) -> int:
    """Write ``source`` without its first ``layers_to_skip`` layers to ``output``.

    Returns the number of layers kept.
    """

    source = source.expanduser()
    output = output.expanduser()
    net = caffe_proto.read_net(source)
    trimmed = trim_net(net, layers_to_skip)
    with nnet_transfer.atomic_output(output) as fh:
        fh.write(trimmed.SerializeToString())
    logger.info("Wrote %d of %d layers to %s", len(trimmed.layer), len(net.layer), output)
    return len(trimmed.layer)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Drop leading layers from a Caffe model and optionally convert the rest",
    )
    parser.add_argument("--source", type=Path, required=True, help="Path to the input .caffemodel")
    parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Path of the trimmed .caffemodel to write",
    )
    parser.add_argument(
        "--skip",
        type=int,
        required=True,
        help="Number of leading layers to drop",
    )
    parser.add_argument(
        "--nnet-output",
        type=Path,
        default=None,
        help="Also convert the trimmed model into an nnet file at this path",
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=nnet_transfer.OUTPUT_FORMATS,
        default="binary",
        help="nnet flavour written with --nnet-output",
    )
    parser.add_argument("--verbose", action="store_true", help="Log every kept and skipped layer")
    args = parser.parse_args(None if argv is None else list(argv))
    if args.skip < 0:
        parser.error("--skip must be a non-negative integer")
    return args


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(list(argv) if argv is not None else None)
    if args.verbose:
        logging.basicConfig(level=logging.INFO)
    try:
        kept = write_partial_model(args.source, args.output, args.skip)
        print(f"Trimmed model with {kept} layer(s) written to {args.output}")
        if args.nnet_output is not None:
            summary = nnet_transfer.convert(
                args.output,
                args.nnet_output,
                output_format=args.output_format,
                verbose=args.verbose,
            )
            print(f"nnet file with {summary.layer_count} layer(s) written to {summary.output}")
        return 0
    except (ConversionError, OSError, ValueError) as exc:
        print(f"nnet_partial: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main(sys.argv[1:]))
