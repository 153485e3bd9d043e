"""
Configuration parameters for facade noise field synthesis.

Every group has defaults, so ``FieldConfig()`` and ``FieldConfig.from_dict({})``
describe a complete, usable configuration.
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace
from typing import Any, Dict, List, Mapping, Optional

from .types import FacadeElement


BANDS = ("red", "yellow", "green", "blue")
NORMALIZE_MODES = ("per_meter", "per_sample", "none")


@dataclass
class PhysicalParams:
    """Propagation and facade transmission parameters."""

    # Extra environmental loss, subtracted as db_per_meter * distance
    db_per_meter: float = 0.0

    # Directivity corrections (dB)
    df_room: float = 6.0
    df_out: float = 0.0

    # Explicit atmospheric term (dB), 0 for the simplified model
    atmospheric_db: float = 0.0

    # Fallbacks
    default_r_db: float = 30.0     # R used when a facade has no data
    fallback_lw_db: float = 60.0   # Lw used by the base field when nothing is supplied
    min_distance_m: float = 0.01   # Distances are clamped to this before log10

    # Per-segment overrides
    r_map: Dict[str, float] = field(default_factory=dict)
    lp_in_map: Dict[str, float] = field(default_factory=dict)
    facade_elements: Dict[str, List[FacadeElement]] = field(default_factory=dict)

    def __post_init__(self):
        if self.db_per_meter < 0:
            raise ValueError("db_per_meter must be non-negative")
        if self.min_distance_m <= 0:
            raise ValueError("min_distance_m must be positive")
        self.facade_elements = {
            name: [
                e if isinstance(e, FacadeElement) else FacadeElement(area=float(e["area"]), R=float(e["R"]))
                for e in elements
            ]
            for name, elements in self.facade_elements.items()
        }


@dataclass
class SmoothingParams:
    """Gaussian kernel sizes and sigmas. A size <= 1 disables the pass."""
    pre_size: int = 3
    pre_sigma: float = 1.2
    final_size: int = 3
    final_sigma: float = 0.8
    overlay_size: int = 9
    overlay_sigma: float = 3.0

    def __post_init__(self):
        for name in ("pre_size", "final_size", "overlay_size"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        for name in ("pre_sigma", "final_sigma", "overlay_sigma"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class BandParams:
    """Kernel shape of one visual band."""
    sample_spacing: float = 0.5   # Spacing of point emitters along the facade (m)
    sigma_perp: float = 3.0       # Gaussian width away from the facade (m)
    along_fraction: float = 0.5   # Gaussian width along the facade, as a fraction of its length
    min_sigma_along: float = 0.25 # Lower bound of that width (m)
    max_dist: float = 6.0         # Beyond this, contributions decay exponentially
    falloff_scale: float = 2.0    # Decay length past max_dist (m)
    gain: float = 1.0             # Peak weight of the band

    def __post_init__(self):
        if self.sample_spacing <= 0:
            raise ValueError("sample_spacing must be positive")
        if self.sigma_perp <= 0 or self.along_fraction <= 0 or self.min_sigma_along <= 0:
            raise ValueError("band kernel widths must be positive")
        if self.falloff_scale <= 0:
            raise ValueError("falloff_scale must be positive")
        if self.gain < 0:
            raise ValueError("gain must be non-negative")


def _default_bands() -> Dict[str, BandParams]:
    return {
        "red": BandParams(sample_spacing=0.12, sigma_perp=1.2, along_fraction=0.35,
                          max_dist=2.0, falloff_scale=1.2, gain=1.0),
        "yellow": BandParams(sample_spacing=0.5, sigma_perp=3.0, along_fraction=0.5,
                             max_dist=6.0, falloff_scale=2.0, gain=0.55),
        "green": BandParams(sample_spacing=0.75, sigma_perp=6.0, along_fraction=0.7,
                            max_dist=12.0, falloff_scale=4.0, gain=0.35),
        "blue": BandParams(sample_spacing=1.0, sigma_perp=10.0, along_fraction=1.0,
                           max_dist=18.0, falloff_scale=6.0, gain=0.2),
    }


@dataclass
class BandSettings:
    """Band energy generation and colour thresholds."""
    bands: Dict[str, BandParams] = field(default_factory=_default_bands)

    normalize: str = "per_meter"
    dot_threshold: float = -0.18

    # Multipliers applied to every band's along / perpendicular kernel width
    lateral_spread_factor: float = 1.0
    perp_spread_factor: float = 1.0

    # Lw above which the yellow / red bands are added (dB)
    red_threshold: float = 90.0
    yellow_threshold: float = 75.0
    green_threshold: float = 60.0
    blue_threshold: float = 45.0

    def __post_init__(self):
        if self.normalize not in NORMALIZE_MODES:
            raise ValueError(f"normalize must be one of {NORMALIZE_MODES}, got {self.normalize!r}")
        unknown = set(self.bands) - set(BANDS)
        if unknown:
            raise ValueError(f"Unknown band(s): {sorted(unknown)}")
        defaults = _default_bands()
        for band in BANDS:
            params = self.bands.get(band)
            if params is None:
                self.bands[band] = defaults[band]
            elif isinstance(params, Mapping):
                self.bands[band] = _merge(defaults[band], params)
        if self.lateral_spread_factor <= 0 or self.perp_spread_factor <= 0:
            raise ValueError("spread factors must be positive")

    @property
    def thresholds(self) -> Dict[str, float]:
        return {
            "red": self.red_threshold,
            "yellow": self.yellow_threshold,
            "green": self.green_threshold,
            "blue": self.blue_threshold,
        }


@dataclass
class HotSpotParams:
    """Per-segment hot-spot overlay."""
    enabled: bool = True
    red_radius: float = 15.0
    red_decay: float = 12.0
    blue_radius: float = 20.0
    lateral_taper: float = 0.25
    hot_segment: Optional[str] = None
    hot_boost: float = 1.0
    linear_weight: float = 0.6   # Blend of linear vs. logarithmic decay

    def __post_init__(self):
        if self.red_radius <= 0 or self.blue_radius <= 0:
            raise ValueError("hot-spot radii must be positive")
        if not 0.0 <= self.linear_weight <= 1.0:
            raise ValueError("linear_weight must be in [0, 1]")


@dataclass
class FieldConfig:
    """Complete configuration of one field computation."""

    # Grid
    area_size: float = 120.0
    resolution: int = 60
    cell_size: Optional[float] = None  # Preferred over resolution when set

    # Building
    building_height: float = 10.0

    physical: PhysicalParams = field(default_factory=PhysicalParams)
    smoothing: SmoothingParams = field(default_factory=SmoothingParams)
    bands: BandSettings = field(default_factory=BandSettings)
    hotspot: HotSpotParams = field(default_factory=HotSpotParams)

    # Collect every emitted sample into NoiseGrid.emit_points
    debug_emit: bool = False

    def __post_init__(self):
        if self.area_size <= 0:
            raise ValueError("area_size must be positive")
        if self.resolution <= 0:
            raise ValueError("resolution must be positive")
        if self.cell_size is not None and self.cell_size < 0:
            raise ValueError("cell_size must be non-negative")

    @property
    def effective_cell_size(self) -> float:
        """Grid spacing in meters, whichever density control is in use."""
        if self.cell_size:
            return float(self.cell_size)
        return self.area_size / max(2, int(self.resolution) - 1)

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]] = None) -> "FieldConfig":
        """
        Build a configuration from a plain mapping, filling in defaults.

        Nested groups (``physical``, ``smoothing``, ``bands``, ``hotspot``)
        may be given as partial mappings.

        Raises:
            ValueError: For unknown keys or invalid values
        """
        return _merge(cls(), values or {})

    def with_overrides(self, values: Mapping[str, Any]) -> "FieldConfig":
        """Return a copy with ``values`` merged on top of this configuration."""
        return _merge(self, values)


def _merge(base, values: Mapping[str, Any]):
    """Recursively merge a mapping into a dataclass instance, returning a new instance."""
    if not isinstance(values, Mapping):
        raise ValueError(f"Expected a mapping for {type(base).__name__}, got {type(values).__name__}")

    names = {f.name for f in fields(base)}
    unknown = set(values) - names
    if unknown:
        raise ValueError(f"Unknown {type(base).__name__} option(s): {sorted(unknown)}")

    changes = {}
    for key, value in values.items():
        current = getattr(base, key)
        if is_dataclass(current) and isinstance(value, Mapping):
            changes[key] = _merge(current, value)
        elif is_dataclass(current) and not isinstance(value, type(current)):
            raise ValueError(f"Expected a mapping for {key!r}, got {type(value).__name__}")
        elif key == "bands" and isinstance(base, BandSettings) and isinstance(value, Mapping):
            merged = dict(current)
            for band, band_values in value.items():
                if band not in BANDS:
                    raise ValueError(f"Unknown band: {band!r}")
                if isinstance(band_values, Mapping):
                    merged[band] = _merge(current[band], band_values)
                else:
                    merged[band] = band_values
            changes[key] = merged
        elif isinstance(current, dict) and isinstance(value, Mapping):
            changes[key] = {**current, **value}
        else:
            changes[key] = value
    return replace(base, **changes)
