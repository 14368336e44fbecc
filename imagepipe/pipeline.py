# -*- coding: utf-8 -*-
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .color import DEFAULT_DITHERING_LEVEL, DEFAULT_QUANTIZATION_QUALITY, load_icc_profile
from .errors import ConfigError
from .resize import DEFAULT_FILTER, ResizeValue, parse_filter, parse_resize_value

logger = logging.getLogger(__name__)

OPERATION_NAMES = ("resize", "quantization", "premultiply", "icc")
MODIFIER_NAMES = ("filter", "dithering", "upscale", "downscale")

Token = Tuple[str, Any]


@dataclass(frozen=True)
class Resize:
    kind: ClassVar[str] = "resize"
    value: ResizeValue
    filter: str = DEFAULT_FILTER
    upscale: bool = True
    downscale: bool = True

    def __str__(self) -> str:
        return f"resize({self.value}, {self.filter})"


@dataclass(frozen=True)
class Quantization:
    kind: ClassVar[str] = "quantization"
    quality: int = DEFAULT_QUANTIZATION_QUALITY

    def __str__(self) -> str:
        return f"quantization({self.quality})"


@dataclass(frozen=True)
class Dithering:
    kind: ClassVar[str] = "dithering"
    level: int = DEFAULT_DITHERING_LEVEL

    def __str__(self) -> str:
        return f"dithering({self.level})"


@dataclass(frozen=True)
class AlphaPremultiply:
    kind: ClassVar[str] = "premultiply"

    def __str__(self) -> str:
        return "premultiply"


@dataclass(frozen=True)
class AlphaUnpremultiply:
    kind: ClassVar[str] = "unpremultiply"

    def __str__(self) -> str:
        return "unpremultiply"


@dataclass(frozen=True)
class ApplyIccProfile:
    kind: ClassVar[str] = "icc"
    profile: Optional[bytes] = field(default=None, repr=False)
    profile_name: str = "sRGB"

    def __str__(self) -> str:
        return f"icc({self.profile_name})"


OperationNode = Union[Resize, Quantization, Dithering, AlphaPremultiply, AlphaUnpremultiply, ApplyIccProfile]


@dataclass(frozen=True)
class PipelineSpec:
    """Compiled, immutable list of operations plus the global modifier defaults they were built with."""
    nodes: Tuple[OperationNode, ...] = ()
    modifiers: Mapping[str, Mapping[str, Any]] = field(default_factory=lambda: MappingProxyType({}))

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    def describe(self) -> str:
        return " -> ".join(str(node) for node in self.nodes) or "(no preprocessing)"


def _parse_percent(value: Any, name: str, default: int, minimum: int = 0) -> int:
    if value is None:
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"--{name} expects an integer between {minimum} and 100, got '{value}'")
    if not minimum <= number <= 100:
        raise ConfigError(f"--{name} must be between {minimum} and 100 (inclusive), got {number}")
    return number


def _parse_flag(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"--{name} expects a boolean, got '{value}'")


def _split_resize_token(value: Any) -> Tuple[ResizeValue, Optional[str]]:
    if value is None:
        raise ConfigError("--resize requires a value")
    text = str(value).strip()
    expression, _, kernel = text.partition(":")
    return parse_resize_value(expression), (parse_filter(kernel) if kernel else None)


def _collect_modifiers(tokens: List[Token], modifiers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    for name, value in (modifiers or {}).items():
        if name not in MODIFIER_NAMES:
            raise ConfigError(f"Unknown pipeline modifier '{name}'")
        raw[name] = value
    for name, value in tokens:
        if name in MODIFIER_NAMES:
            raw[name] = value
    return raw


def compile_pipeline(tokens: Iterable[Token], modifiers: Optional[Mapping[str, Any]] = None) -> PipelineSpec:
    """
    Builds a PipelineSpec from ordered (name, value) tokens.

    Operations keep their declaration order. Modifiers ('filter', 'dithering',
    'upscale', 'downscale') may sit anywhere in the token stream or in
    `modifiers`; they are resolved once into every node of the matching kind
    unless the node carries its own override.
    """
    tokens = list(tokens)
    raw_modifiers = _collect_modifiers(tokens, modifiers)

    resize_defaults = {
        "filter": parse_filter(raw_modifiers["filter"]) if raw_modifiers.get("filter") is not None else DEFAULT_FILTER,
        "upscale": _parse_flag(raw_modifiers.get("upscale", True), "upscale"),
        "downscale": _parse_flag(raw_modifiers.get("downscale", True), "downscale"),
    }
    dithering_level: Optional[int] = None
    if "dithering" in raw_modifiers:
        dithering_level = _parse_percent(raw_modifiers["dithering"], "dithering", DEFAULT_DITHERING_LEVEL, minimum=1)

    nodes: List[OperationNode] = []
    premultiply_pending = False
    for name, value in tokens:
        if name in MODIFIER_NAMES:
            continue
        if name == "premultiply":
            if premultiply_pending:
                logger.warning("--premultiply given twice before the same operation. Applying it once.")
            premultiply_pending = True
            continue

        if name == "resize":
            resize_value, kernel = _split_resize_token(value)
            step: List[OperationNode] = [Resize(
                value=resize_value,
                filter=kernel or resize_defaults["filter"],
                upscale=resize_defaults["upscale"],
                downscale=resize_defaults["downscale"],
            )]
        elif name == "quantization":
            step = [Quantization(_parse_percent(value, "quantization", DEFAULT_QUANTIZATION_QUALITY))]
            if dithering_level is not None:
                step.append(Dithering(dithering_level))
        elif name == "icc":
            profile, profile_name = load_icc_profile(value)
            step = [ApplyIccProfile(profile=profile, profile_name=profile_name)]
        else:
            raise ConfigError(
                f"Unknown operation '{name}'. Supported operations: {', '.join(OPERATION_NAMES)}"
            )

        # premultiplied alpha only lives for the wrapped operation
        if premultiply_pending:
            step = [AlphaPremultiply(), *step, AlphaUnpremultiply()]
            premultiply_pending = False
        nodes.extend(step)

    if premultiply_pending:
        logger.warning("--premultiply is not followed by any operation. Ignoring it.")

    if dithering_level is not None and not any(isinstance(node, Quantization) for node in nodes):
        raise ConfigError("--dithering requires --quantization")

    compiled_modifiers: Dict[str, Mapping[str, Any]] = {"resize": MappingProxyType(resize_defaults)}
    if dithering_level is not None:
        compiled_modifiers["quantization"] = MappingProxyType({"dithering": dithering_level})

    spec = PipelineSpec(nodes=tuple(nodes), modifiers=MappingProxyType(compiled_modifiers))
    logger.debug(f"Compiled pipeline: {spec.describe()}")
    return spec
