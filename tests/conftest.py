import pytest

from facade_noise import FieldConfig, Segment


# L with its reentrant corner at (-0.8, -0.8); the notch is x > -0.8, z > -0.8
L_PERIMETER = [(-8.0, -8.0), (8.0, -8.0), (8.0, -0.8), (-0.8, -0.8), (-0.8, 8.0), (-8.0, 8.0)]
SQUARE_PERIMETER = [(-5.0, -5.0), (5.0, -5.0), (5.0, 5.0), (-5.0, 5.0)]


@pytest.fixture
def l_perimeter():
    return list(L_PERIMETER)


@pytest.fixture
def square_perimeter():
    return list(SQUARE_PERIMETER)


@pytest.fixture
def single_segment():
    return Segment(name="facade", p1=(-5.0, 0.0), p2=(5.0, 0.0))


@pytest.fixture
def small_config():
    """Coarse grid so full pipeline runs stay fast."""
    return FieldConfig(area_size=40.0, resolution=41)
