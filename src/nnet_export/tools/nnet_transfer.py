"""Deterministic conversion of Caffe models into nnet files."""

from __future__ import annotations

import argparse
import contextlib
import hashlib
import json
import logging
import math
import os
import struct
import sys
import tempfile
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Sequence, Tuple

import numpy as np

from ..formats import caffe_proto
from ..formats.model_graph import (
    ConvolutionParams,
    Layer,
    ModelGraph,
    PoolingParams,
    PoolMethod,
    trim_net,
)
from ..formats.nnet_common import (
    FLOAT32_DTYPE,
    FLOAT32_STRUCT,
    INT32_STRUCT,
    POOL_METHOD_MAX,
    POOL_METHOD_OTHER,
    TEXT_ENCODING,
    TEXT_FLOAT_FORMAT,
    TEXT_NAN,
    TEXT_NEGATIVE_INFINITY,
    TEXT_POSITIVE_INFINITY,
    AuxiliaryTensorError,
    ConversionError,
    LayerKind,
    TensorCountError,
    TensorDimensionError,
    UnsupportedConfigurationError,
)

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("binary", "text")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
VERBOSE_ENV_VAR = "NNET_TRANSFER_VERBOSE"

MeanLoader = Callable[[Path], np.ndarray]


def _normalise_path(path: Path) -> Path:
    """Return an absolute version of *path* tolerant of exotic links."""

    path = path.expanduser()
    try:
        return path.resolve()
    except OSError:  # pragma: no cover - exercised on Windows
        return path.absolute()


# ---------------------------------------------------------------------------
# Tensor writers


class TensorWriter:
    """Write big-endian int32 and float32 values to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._hash = hashlib.sha256()
        self.bytes_written = 0

    def _write(self, data: bytes) -> None:
        if not data:
            return
        self._stream.write(data)
        self._hash.update(data)
        self.bytes_written += len(data)

    def write_int(self, value: int) -> None:
        self._write(INT32_STRUCT.pack(int(value)))

    def write_float(self, value: float) -> None:
        self._write(FLOAT32_STRUCT.pack(float(value)))

    def write_floats(self, values) -> None:
        array = np.asarray(values, dtype=np.float32).reshape(-1)
        self._write(array.astype(FLOAT32_DTYPE).tobytes())

    def write_counted_floats(self, values) -> None:
        array = np.asarray(values, dtype=np.float32).reshape(-1)
        self.write_int(array.size)
        self.write_floats(array)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


class TextTensorWriter(TensorWriter):
    """Write one decimal value per line, the consumer's text flavour."""

    def _write_tokens(self, tokens: Sequence[str]) -> None:
        self._write("".join(f"{token}\n" for token in tokens).encode(TEXT_ENCODING))

    def write_int(self, value: int) -> None:
        # Same range check as the binary flavour.
        INT32_STRUCT.pack(int(value))
        self._write_tokens([str(int(value))])

    def write_float(self, value: float) -> None:
        self._write_tokens([_text_float(np.float32(value))])

    def write_floats(self, values) -> None:
        array = np.asarray(values, dtype=np.float32).reshape(-1)
        self._write_tokens([_text_float(value) for value in array])


def _text_float(value: np.float32) -> str:
    value = float(value)
    if math.isnan(value):
        return TEXT_NAN
    if math.isinf(value):
        return TEXT_POSITIVE_INFINITY if value > 0 else TEXT_NEGATIVE_INFINITY
    return format(value, TEXT_FLOAT_FORMAT)


# ---------------------------------------------------------------------------
# Auxiliary tensors


def load_mean_file(path: Path) -> np.ndarray:
    """Return the flat float32 values of the mean blob stored at ``path``."""

    try:
        blob = caffe_proto.read_blob(path)
    except FileNotFoundError as exc:
        raise AuxiliaryTensorError(f"Mean file {path} does not exist") from exc
    except OSError as exc:
        raise AuxiliaryTensorError(f"Unable to read mean file {path}: {exc}") from exc
    values = np.fromiter(blob.data, dtype=np.float32, count=len(blob.data))
    logger.debug("Loaded %d mean values from %s", values.size, path)
    return values


# ---------------------------------------------------------------------------
# Layer encoding


class LayerEncoder:
    """Encode layers one at a time into a :class:`TensorWriter`.

    ``mean_loader`` reads mean files referenced by data layers; relative mean
    file paths are resolved against ``mean_root`` when it is given and
    against the working directory otherwise.
    """

    def __init__(
        self,
        writer: TensorWriter,
        *,
        mean_loader: MeanLoader | None = None,
        mean_root: Path | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.writer = writer
        self._mean_loader = mean_loader if mean_loader is not None else load_mean_file
        self._mean_root = mean_root
        self._log = log if log is not None else logger
        self._checks: Dict[LayerKind, Callable[[Layer], object]] = {
            LayerKind.DATA: self._check_data,
            LayerKind.INNER_PRODUCT: self._inner_product_dims,
            LayerKind.CONVOLUTION: self._check_convolution,
            LayerKind.POOLING: self._check_pooling,
        }
        self._bodies: Dict[LayerKind, Callable[[Layer, object], None]] = {
            LayerKind.DATA: self._encode_data,
            LayerKind.INNER_PRODUCT: self._encode_inner_product,
            LayerKind.RELU: self._encode_empty,
            LayerKind.SOFTMAX_WITH_LOSS: self._encode_empty,
            LayerKind.CONVOLUTION: self._encode_convolution,
            LayerKind.POOLING: self._encode_pooling,
            LayerKind.DROPOUT: self._encode_empty,
        }

    def encode(self, layer: Layer) -> None:
        """Validate ``layer`` and write its record.

        Nothing is written for a layer that fails validation. Whatever the
        check returns is handed to the body encoder.
        """

        self._log.info("Processing layer %s of type %s", layer.name, layer.kind.type_name)
        check = self._checks.get(layer.kind)
        prepared = check(layer) if check is not None else None
        self.writer.write_int(int(layer.kind))
        self._bodies[layer.kind](layer, prepared)

    def _encode_empty(self, layer: Layer, prepared: object = None) -> None:
        # Dropout is the identity at inference time; its rate is dropped.
        pass

    def _require_int32(self, layer: Layer, field_name: str, value: int) -> None:
        try:
            INT32_STRUCT.pack(int(value))
        except struct.error:
            raise UnsupportedConfigurationError(
                f"Not supported: {field_name} {value} does not fit in a signed 32-bit integer",
                layer_index=layer.index,
                layer_name=layer.name,
            ) from None

    def _resolve_mean_file(self, mean_file: str) -> Path:
        path = Path(mean_file).expanduser()
        if self._mean_root is not None and not path.is_absolute():
            path = self._mean_root / path
        return path

    def _load_mean(self, layer: Layer, mean_file: str) -> np.ndarray:
        path = self._resolve_mean_file(mean_file)
        self._log.info("Reading mean file %s", path)
        try:
            return self._mean_loader(path)
        except AuxiliaryTensorError as exc:
            raise AuxiliaryTensorError(
                str(exc), layer_index=layer.index, layer_name=layer.name
            ) from exc

    def _check_data(self, layer: Layer) -> None:
        if layer.transform is not None and layer.transform.crop_size is not None:
            self._require_int32(layer, "crop_size", layer.transform.crop_size)

    def _encode_data(self, layer: Layer, prepared: object = None) -> None:
        transform = layer.transform
        writer = self.writer
        writer.write_int(1 if transform is not None else 0)
        if transform is None:
            return
        writer.write_int(1 if transform.scale is not None else 0)
        if transform.scale is not None:
            writer.write_float(transform.scale)
        writer.write_int(1 if transform.mirror is not None else 0)
        writer.write_int(1 if transform.crop_size is not None else 0)
        if transform.crop_size is not None:
            writer.write_int(transform.crop_size)
        # One value for every channel, or one value per channel.
        writer.write_counted_floats(transform.mean_values)
        writer.write_int(1 if transform.mean_file is not None else 0)
        if transform.mean_file is not None:
            writer.write_counted_floats(self._load_mean(layer, transform.mean_file))

    def _inner_product_dims(self, layer: Layer) -> Tuple[int, int]:
        if len(layer.blobs) != 2:
            raise TensorCountError(
                f"Unexpected number of blobs for inner product layer: {len(layer.blobs)}",
                layer_index=layer.index,
                layer_name=layer.name,
            )
        kn = layer.blobs[0].count
        n = layer.blobs[1].count
        if n == 0:
            raise TensorDimensionError(
                f"Invalid layer dimensions: empty bias for {kn} weights",
                layer_index=layer.index,
                layer_name=layer.name,
            )
        k = kn // n
        if k * n != kn:
            raise TensorDimensionError(
                f"Invalid layer dimensions: {kn} != {k}*{n}",
                layer_index=layer.index,
                layer_name=layer.name,
            )
        return k, n

    def _encode_inner_product(self, layer: Layer, dims: Tuple[int, int]) -> None:
        # blobs[0] is the n x k weight matrix, blobs[1] the n bias terms:
        # output[i] = bias[i] + sum_j weight[i][j] * input[j]
        k, n = dims
        self._log.info("Input dimension: %d, output dimension: %d", k, n)
        self.writer.write_int(k)
        self.writer.write_int(n)
        for blob in layer.blobs:
            self.writer.write_floats(blob.data)

    def _check_convolution(self, layer: Layer) -> None:
        param = layer.convolution or ConvolutionParams()
        if param.group != 1:
            raise UnsupportedConfigurationError(
                f"Not supported: convolution layer has group {param.group} (expected 1)",
                layer_index=layer.index,
                layer_name=layer.name,
            )
        if param.stride != 1:
            raise UnsupportedConfigurationError(
                f"Not supported: convolution layer has stride {param.stride} (expected 1)",
                layer_index=layer.index,
                layer_name=layer.name,
            )
        self._require_int32(layer, "num_output", param.num_output)
        self._require_int32(layer, "kernel_size", param.kernel_size)
        self._require_int32(layer, "pad", param.pad)

    def _encode_convolution(self, layer: Layer, prepared: object = None) -> None:
        param = layer.convolution or ConvolutionParams()
        self.writer.write_int(param.num_output)
        self.writer.write_int(param.kernel_size)
        self.writer.write_int(param.pad)
        if len(layer.blobs) != 2:
            self._log.warning(
                "Convolution layer %s carries %d blobs; the consumer reads a kernel and a bias tensor",
                layer.name,
                len(layer.blobs),
            )
        # blobs[0]: num_output x channels x kernel_size x kernel_size
        # blobs[1]: num_output
        for blob in layer.blobs:
            self.writer.write_counted_floats(blob.data)

    def _check_pooling(self, layer: Layer) -> None:
        param = layer.pooling or PoolingParams()
        self._require_int32(layer, "kernel_size", param.kernel_size)
        self._require_int32(layer, "stride", param.stride)
        self._require_int32(layer, "pad", param.pad)

    def _encode_pooling(self, layer: Layer, prepared: object = None) -> None:
        param = layer.pooling or PoolingParams()
        self.writer.write_int(param.kernel_size)
        self.writer.write_int(param.stride)
        self.writer.write_int(param.pad)
        self.writer.write_int(POOL_METHOD_MAX if param.pool == PoolMethod.MAX else POOL_METHOD_OTHER)


# ---------------------------------------------------------------------------
# Model writer


@dataclass(frozen=True)
class LayerInfo:
    """Description of one encoded layer record."""

    index: int
    name: str
    kind: str
    tag: int
    bytes: int


@dataclass(frozen=True)
class EncodingReport:
    layers: Tuple[LayerInfo, ...]
    total_bytes: int
    sha256: str


def write_model(
    stream: BinaryIO,
    graph: ModelGraph,
    *,
    text: bool = False,
    mean_loader: MeanLoader | None = None,
    mean_root: Path | None = None,
    log: logging.Logger | None = None,
) -> EncodingReport:
    """Write ``graph`` to ``stream`` as an nnet payload.

    The first failing layer aborts the write. Bytes already written are left
    in ``stream``; callers must treat the stream as unusable after an error.
    """

    active_log = log if log is not None else logger
    writer: TensorWriter = TextTensorWriter(stream) if text else TensorWriter(stream)
    encoder = LayerEncoder(writer, mean_loader=mean_loader, mean_root=mean_root, log=active_log)
    active_log.info("Writing layers: %d", len(graph.layers))
    writer.write_int(len(graph.layers))
    infos: List[LayerInfo] = []
    for layer in graph.layers:
        start = writer.bytes_written
        encoder.encode(layer)
        infos.append(
            LayerInfo(
                index=layer.index,
                name=layer.name,
                kind=layer.kind.type_name,
                tag=int(layer.kind),
                bytes=writer.bytes_written - start,
            )
        )
    return EncodingReport(layers=tuple(infos), total_bytes=writer.bytes_written, sha256=writer.hexdigest())


@contextlib.contextmanager
def atomic_output(path: Path) -> Iterator[BinaryIO]:
    """Yield a binary handle whose content replaces ``path`` only on success."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".partial", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            yield fh
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()
        raise


# ---------------------------------------------------------------------------
# Summaries


@dataclass(frozen=True)
class ConversionSummary:
    """Summary of the nnet file written by :func:`convert`."""

    source: Path
    output: Path
    output_format: str
    layers: Tuple[LayerInfo, ...]
    skipped_layers: int
    total_bytes: int
    sha256: str
    log_path: Path | None

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def to_dict(self) -> Dict[str, object]:
        """Serialise the summary into JSON-serialisable primitives."""

        return {
            "source": str(self.source),
            "output": str(self.output),
            "format": self.output_format,
            "log_path": str(self.log_path) if self.log_path is not None else None,
            "skipped_layers": self.skipped_layers,
            "layers": [
                {
                    "index": info.index,
                    "name": info.name,
                    "kind": info.kind,
                    "tag": info.tag,
                    "bytes": info.bytes,
                }
                for info in self.layers
            ],
            "total_bytes": self.total_bytes,
            "sha256": self.sha256,
        }


def format_summary(summary: ConversionSummary) -> str:
    """Return a human-friendly multi-line summary of the conversion."""

    header = "nnet Conversion Summary"
    lines = [header, "=" * len(header)]
    lines.append(f"Source : {summary.source}")
    lines.append(f"Output : {summary.output} ({summary.output_format})")
    if summary.skipped_layers:
        lines.append(f"Skipped: first {summary.skipped_layers} layer(s)")
    if summary.log_path:
        lines.append(f"Log file: {summary.log_path}")

    lines.append("")
    lines.append("Layers:")
    if summary.layers:
        name_width = max(len("Name"), *(len(info.name) for info in summary.layers))
        kind_width = max(len("Kind"), *(len(info.kind) for info in summary.layers))
        header_row = f"  {'#':>3}  {'Name'.ljust(name_width)}  {'Kind'.ljust(kind_width)}  Tag     Bytes"
        lines.append(header_row)
        lines.append("  " + "-" * (len(header_row) - 2))
        for info in summary.layers:
            lines.append(
                "  "
                + f"{info.index:>3}  {info.name.ljust(name_width)}  {info.kind.ljust(kind_width)}  {info.tag:>3}  {info.bytes:>8}"
            )
    else:
        lines.append("  <no layers written>")

    lines.append("")
    lines.append(f"Total layers: {summary.layer_count} | Total bytes: {summary.total_bytes}")
    lines.append(f"SHA-256: {summary.sha256}")
    return "\n".join(lines)


def render_summary(summary: ConversionSummary, *, format: str = "table") -> str:
    """Serialise ``summary`` into ``"table"`` or ``"json"`` (case-insensitive)."""

    normalized = format.lower()
    if normalized == "table":
        return format_summary(summary)
    if normalized == "json":
        return json.dumps(summary.to_dict(), indent=2, sort_keys=True)
    raise ValueError(f"Unsupported summary format: {format}")


# ---------------------------------------------------------------------------
# Conversion driver


def convert(
    source: Path,
    output: Path,
    *,
    skip_layers: int = 0,
    output_format: str = "binary",
    mean_root: Path | None = None,
    verbose: bool = False,
    log_path: Path | None = None,
    mean_loader: MeanLoader | None = None,
) -> ConversionSummary:
    """Convert the Caffe model at ``source`` into an nnet file at ``output``.

    The first ``skip_layers`` layers are dropped before ingestion, so they may
    be of any type. The payload is written to a temporary file next to
    ``output`` and renamed over it once every layer has been encoded; a
    failed conversion leaves ``output`` untouched.
    """

    if output_format not in OUTPUT_FORMATS:
        raise ValueError(f"Unsupported output format: {output_format}")
    if skip_layers < 0:
        raise ValueError(f"skip_layers must be non-negative, got {skip_layers}")

    source = _normalise_path(source)
    output = _normalise_path(output)
    if mean_root is not None:
        mean_root = _normalise_path(mean_root)

    if verbose and not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    package_logger = logging.getLogger("nnet_export")
    file_handler: logging.Handler | None = None
    previous_level = package_logger.level

    try:
        if log_path is not None:
            log_path = _normalise_path(log_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            package_logger.addHandler(file_handler)
            package_logger.setLevel(logging.DEBUG)

        def log_verbose(message: str, *args: object) -> None:
            if verbose:
                logger.info(message, *args)
            else:
                logger.debug(message, *args)

        def log_notice(message: str, *args: object) -> None:
            logger.info(message, *args)

        if log_path is not None:
            log_notice("Writing conversion log to %s", log_path)
        log_notice("Resolved source path: %s", source)
        log_notice("Resolved output path: %s", output)

        def _convert_inner() -> ConversionSummary:
            net = caffe_proto.read_net(source)
            log_verbose("Decoded model %r with %d layers", net.name, len(net.layer))
            if skip_layers:
                net = trim_net(net, skip_layers)
            graph = ModelGraph.from_proto(net)
            with atomic_output(output) as fh:
                report = write_model(
                    fh,
                    graph,
                    text=output_format == "text",
                    mean_loader=mean_loader,
                    mean_root=mean_root,
                    log=logger,
                )
            summary = ConversionSummary(
                source=source,
                output=output,
                output_format=output_format,
                layers=report.layers,
                skipped_layers=skip_layers,
                total_bytes=report.total_bytes,
                sha256=report.sha256,
                log_path=log_path,
            )
            for line in format_summary(summary).splitlines():
                log_verbose(line)
            return summary

        try:
            return _convert_inner()
        except (ConversionError, OSError, ValueError) as exc:
            logger.exception("Conversion failed: %s", exc)
            raise
    finally:
        if file_handler is not None:
            package_logger.removeHandler(file_handler)
            file_handler.close()
            package_logger.setLevel(previous_level)


def run_interactive_cli(
    default_source: Path | None = None,
    default_output: Path | None = None,
    *,
    skip_layers: int = 0,
    output_format: str = "binary",
    mean_root: Path | None = None,
    verbose: bool = True,
    input_func: Callable[[str], str] = input,
    output_func: Callable[[str], None] = print,
) -> ConversionSummary:
    """Guide the user through conversion via a lightweight text UI."""

    def _display(message: str = "") -> None:
        output_func(message)

    def _prompt_path(prompt: str, default: Path | None, *, must_exist: bool) -> Path:
        while True:
            suffix = f" [{default}]" if default is not None else ""
            response = input_func(f"{prompt}{suffix}: ").strip()
            if not response:
                if default is None:
                    _display("Please provide a path.")
                    continue
                path = default
            else:
                path = Path(response)
            path = path.expanduser()
            if must_exist and not path.exists():
                _display(f"Path {path} does not exist. Please try again.")
                continue
            return path

    def _prompt_count(prompt: str, default: int) -> int:
        while True:
            response = input_func(f"{prompt} [{default}]: ").strip()
            if not response:
                return default
            try:
                value = int(response)
            except ValueError:
                _display("Please enter an integer value.")
                continue
            if value < 0:
                _display("Please provide a non-negative integer.")
                continue
            return value

    def _prompt_choice(prompt: str, choices: Sequence[str], default: str) -> str:
        while True:
            response = input_func(f"{prompt} ({'/'.join(choices)}) [{default}]: ").strip().lower()
            if not response:
                return default
            if response in choices:
                return response
            _display(f"Please answer one of: {', '.join(choices)}.")

    def _prompt_confirm(prompt: str, default: bool = True) -> bool:
        choice = "Y/n" if default else "y/N"
        while True:
            response = input_func(f"{prompt} ({choice}): ").strip().lower()
            if not response:
                return default
            if response in {"y", "yes"}:
                return True
            if response in {"n", "no"}:
                return False
            _display("Please answer 'y' or 'n'.")

    _display("nnet Conversion Assistant")
    _display("=" * 25)
    _display("Press Ctrl+C at any time to abort.\n")

    source = _prompt_path("Caffe model", default_source, must_exist=True)
    selected_format = _prompt_choice("Output format", OUTPUT_FORMATS, output_format)
    suffix = ".txt" if selected_format == "text" else ".nnet"
    output = _prompt_path(
        "Output file",
        default_output or source.with_suffix(suffix),
        must_exist=False,
    )
    selected_skip = _prompt_count("Layers to skip", skip_layers)

    _display("\nConfiguration summary:")
    summary_block = textwrap.dedent(
        f"""
        Source : {source}
        Output : {output}
        Format : {selected_format}
        Skip   : {selected_skip}
        """
    ).strip("\n")
    _display(summary_block)

    if not _prompt_confirm("Proceed with conversion?", True):
        raise KeyboardInterrupt("Conversion cancelled by user")

    summary = convert(
        source,
        output,
        skip_layers=selected_skip,
        output_format=selected_format,
        mean_root=mean_root,
        verbose=verbose,
    )
    _display("")
    _display(render_summary(summary, format="table"))
    return summary


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert a Caffe model into an nnet file for the analysis engine.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--source", type=Path, help="Path to the .caffemodel file")
    parser.add_argument("--output", type=Path, help="Path of the nnet file to write")
    parser.add_argument(
        "--skip-layers",
        type=int,
        default=0,
        help="Number of leading layers to drop before conversion",
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=OUTPUT_FORMATS,
        default="binary",
        help="Write big-endian binary records or one value per line",
    )
    parser.add_argument(
        "--mean-root",
        type=Path,
        default=None,
        help="Directory used to resolve relative mean_file paths (defaults to the working directory)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Write a debug log of the conversion here")
    parser.add_argument(
        "--verbose",
        dest="verbose",
        action="store_true",
        default=None,
        help=f"Enable verbose logging (can also set {VERBOSE_ENV_VAR}=1)",
    )
    parser.add_argument("--quiet", dest="verbose", action="store_false", help="Disable verbose logging")
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Launch an interactive text UI to guide the conversion",
    )
    parser.add_argument(
        "--no-summary",
        dest="print_summary",
        action="store_false",
        help="Do not print the conversion summary table",
    )
    parser.add_argument(
        "--summary-format",
        choices=("table", "json"),
        default="table",
        help="Format to use when rendering the conversion summary",
    )
    parser.add_argument("--summary-output", type=Path, help="Optional path to write the conversion summary to")
    parser.set_defaults(print_summary=True)

    args = parser.parse_args(argv)

    def _expand_path(value: Path | None) -> Path | None:
        if value is None:
            return None
        return value.expanduser()

    args.source = _expand_path(args.source)
    args.output = _expand_path(args.output)
    args.mean_root = _expand_path(args.mean_root)
    args.log_file = _expand_path(args.log_file)
    args.summary_output = _expand_path(args.summary_output)

    if args.verbose is None:
        env_value = os.environ.get(VERBOSE_ENV_VAR)
        if env_value is None:
            args.verbose = False
        else:
            args.verbose = env_value.lower() not in {"", "0", "false", "no"}

    if not args.interactive:
        missing: List[str] = []
        if args.source is None:
            missing.append("--source")
        if args.output is None:
            missing.append("--output")
        if missing:
            parser.error(" and ".join(missing) + " required unless --interactive is supplied")

    if args.skip_layers < 0:
        parser.error("--skip-layers must be a non-negative integer")

    return args


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO)

    if args.interactive:
        run_interactive_cli(
            args.source,
            args.output,
            skip_layers=args.skip_layers,
            output_format=args.output_format,
            mean_root=args.mean_root,
            verbose=args.verbose,
        )
        return

    try:
        summary = convert(
            args.source,
            args.output,
            skip_layers=args.skip_layers,
            output_format=args.output_format,
            mean_root=args.mean_root,
            verbose=args.verbose,
            log_path=args.log_file,
        )
    except (ConversionError, OSError) as exc:
        print(f"nnet_transfer: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    rendered = render_summary(summary, format=args.summary_format)

    if args.summary_output is not None:
        summary_path = args.summary_output
        summary_path.parent.mkdir(parents=True, exist_ok=True)
        text = rendered if rendered.endswith("\n") else rendered + "\n"
        summary_path.write_text(text, encoding="utf-8")

    if args.print_summary:
        print(rendered)


__all__ = [
    "ConversionSummary",
    "EncodingReport",
    "LayerEncoder",
    "LayerInfo",
    "TensorWriter",
    "TextTensorWriter",
    "atomic_output",
    "convert",
    "format_summary",
    "load_mean_file",
    "main",
    "render_summary",
    "run_interactive_cli",
    "write_model",
]


if __name__ == "__main__":
    main()
