from __future__ import annotations

import geopandas as gpd
import pytest
from shapely.geometry import box

CRS = "EPSG:25833"


def grid_frame(nx: int, ny: int, size: float = 1000.0, island: bool = False) -> gpd.GeoDataFrame:
    """nx * ny touching square districts, row-major, optionally plus one detached square."""
    geoms, keys = [], []
    for j in range(ny):
        for i in range(nx):
            geoms.append(box(i * size, j * size, (i + 1) * size, (j + 1) * size))
            keys.append(f"{1 + j:02d}{1 + i:03d}")
    if island:
        far = (nx + 5) * size
        geoms.append(box(far, far, far + size, far + size))
        keys.append("99001")
    return gpd.GeoDataFrame({"key": keys}, geometry=geoms, crs=CRS).rename_geometry("district_geometry")


@pytest.fixture
def grid():
    return grid_frame
