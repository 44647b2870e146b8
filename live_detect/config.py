from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class DetectorConfig:
    """Settings for one detector (the fast realtime one or the precise one)."""

    input_size: int = 640
    conf_threshold: float = 0.6
    iou_threshold: float = 0.5
    pad_color: Tuple[int, int, int] = (114, 114, 114)
    # ORT execution providers to try first; None uses ORT defaults.
    providers: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in (0, 1]")
        if len(self.pad_color) != 3 or any(not 0 <= int(c) <= 255 for c in self.pad_color):
            raise ValueError("pad_color must be three values in [0, 255]")


@dataclass(frozen=True)
class AnalyzerConfig:
    frames_to_skip: int = 5
    realtime: DetectorConfig = field(default_factory=DetectorConfig)
    precise: DetectorConfig = field(default_factory=DetectorConfig)
    show_performance: bool = False
    verbose_performance: bool = False

    def __post_init__(self) -> None:
        if self.frames_to_skip < 0:
            raise ValueError("frames_to_skip must be >= 0")


def _require_number(payload: Dict[str, Any], key: str, default: float) -> float:
    if key not in payload:
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: int) -> int:
    if key not in payload:
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    if key not in payload:
        return default
    value = payload[key]
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false")
    return value


def _reject_unknown(payload: Dict[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown {where} keys: {unknown}")


def _parse_detector(payload: Any, where: str) -> DetectorConfig:
    if not isinstance(payload, dict):
        raise ValueError(f"{where} must be a JSON object")
    _reject_unknown(payload, {"input_size", "conf_threshold", "iou_threshold", "pad_color", "providers"}, where)

    defaults = DetectorConfig()
    pad_color = payload.get("pad_color", list(defaults.pad_color))
    if not isinstance(pad_color, list) or not all(isinstance(c, int) and not isinstance(c, bool) for c in pad_color):
        raise ValueError(f"{where}.pad_color must be a list of integers")
    providers = payload.get("providers")
    if providers is not None:
        if not isinstance(providers, list) or not all(isinstance(p, str) for p in providers):
            raise ValueError(f"{where}.providers must be a list of strings")
        providers = tuple(providers)

    return DetectorConfig(
        input_size=_require_int(payload, "input_size", defaults.input_size),
        conf_threshold=_require_number(payload, "conf_threshold", defaults.conf_threshold),
        iou_threshold=_require_number(payload, "iou_threshold", defaults.iou_threshold),
        pad_color=tuple(pad_color),
        providers=providers,
    )


def parse_analyzer_config(payload: Dict[str, Any]) -> AnalyzerConfig:
    if not isinstance(payload, dict):
        raise ValueError("Analyzer config must be a JSON object")
    _reject_unknown(
        payload,
        {"frames_to_skip", "realtime", "precise", "show_performance", "verbose_performance"},
        "analyzer config",
    )
    return AnalyzerConfig(
        frames_to_skip=_require_int(payload, "frames_to_skip", 5),
        realtime=_parse_detector(payload.get("realtime", {}), "realtime"),
        precise=_parse_detector(payload.get("precise", {}), "precise"),
        show_performance=_require_bool(payload, "show_performance", False),
        verbose_performance=_require_bool(payload, "verbose_performance", False),
    )


def load_analyzer_config(path: Path) -> AnalyzerConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Analyzer config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid analyzer config JSON: {path}") from exc
    return parse_analyzer_config(payload)
