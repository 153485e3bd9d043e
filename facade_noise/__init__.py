"""
Facade Noise Field Package

Synthesise 2D outdoor sound level maps around buildings from the sound
power radiated by their facades.
"""

from .types import (
    Point,
    Segment,
    FacadeElement,
    Source,
    PropagationResult,
    NoiseGrid,
    as_level,
)
from .config import (
    BANDS,
    PhysicalParams,
    SmoothingParams,
    BandParams,
    BandSettings,
    HotSpotParams,
    FieldConfig,
)
from .geometry import (
    perimeter_polygon,
    points_in_polygon,
    project_onto_segment,
    distance_to_segment,
    orient_normals,
    segment_outward_normal,
)
from .sampler import (
    sample_positions,
    sample_segment,
    generate_sources,
)
from .propagation import (
    PropagationOptions,
    a_geo,
    a_atm,
    lw_room_from_lp_in,
    lp_out_at_point,
    facade_re_prime,
    build_facade_elements,
    directivity_weight,
    inverse_power_energy,
    propagate,
    propagate_many,
    db_to_energy,
    energy_to_db,
)
from .bands import (
    active_bands,
    generate_segment_band_energy,
)
from .overlay import hot_spot_levels
from .smoothing import gaussian_smooth
from .pipeline import (
    build_grid_axes,
    resolve_levels,
    compute_base_field,
    compute_overlay_energy,
    combine_energy,
    cap_levels,
    compute_noise_grid,
    build_heatmap,
)
from .colorscale import (
    default_colorscale,
    build_color_scale,
    apply_color_attenuation,
)
from .footprint import (
    BUILDING_SHAPES,
    SHAPE_SEGMENT_COUNTS,
    square_footprint,
    l_footprint,
    u_footprint,
    t_footprint,
    cross_footprint,
    polygon_footprint,
    segments_from_perimeter,
    extract_footprint,
    load_footprint,
    extrude_footprint,
    default_lw_map,
    ensure_lw_defaults,
)

__all__ = [
    # Types
    'Point',
    'Segment',
    'FacadeElement',
    'Source',
    'PropagationResult',
    'NoiseGrid',
    'as_level',
    # Configuration
    'BANDS',
    'PhysicalParams',
    'SmoothingParams',
    'BandParams',
    'BandSettings',
    'HotSpotParams',
    'FieldConfig',
    # Geometry
    'perimeter_polygon',
    'points_in_polygon',
    'project_onto_segment',
    'distance_to_segment',
    'orient_normals',
    'segment_outward_normal',
    # Source sampling
    'sample_positions',
    'sample_segment',
    'generate_sources',
    # Propagation
    'PropagationOptions',
    'a_geo',
    'a_atm',
    'lw_room_from_lp_in',
    'lp_out_at_point',
    'facade_re_prime',
    'build_facade_elements',
    'directivity_weight',
    'inverse_power_energy',
    'propagate',
    'propagate_many',
    'db_to_energy',
    'energy_to_db',
    # Bands and overlay
    'active_bands',
    'generate_segment_band_energy',
    'hot_spot_levels',
    'gaussian_smooth',
    # Pipeline
    'build_grid_axes',
    'resolve_levels',
    'compute_base_field',
    'compute_overlay_energy',
    'combine_energy',
    'cap_levels',
    'compute_noise_grid',
    'build_heatmap',
    # Colour
    'default_colorscale',
    'build_color_scale',
    'apply_color_attenuation',
    # Footprints
    'BUILDING_SHAPES',
    'SHAPE_SEGMENT_COUNTS',
    'square_footprint',
    'l_footprint',
    'u_footprint',
    't_footprint',
    'cross_footprint',
    'polygon_footprint',
    'segments_from_perimeter',
    'extract_footprint',
    'load_footprint',
    'extrude_footprint',
    'default_lw_map',
    'ensure_lw_defaults',
]
