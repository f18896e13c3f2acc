"""Ways of wiring a 2-D sensor cell grid onto the proximal segments of a Region."""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple

import numpy as np

from building_blocks import (
    CONNECTED_PERM,
    INITIAL_PERMANENCE,
    Region,
    SensorCell,
    Synapse,
)

logger = logging.getLogger(__name__)

SensorCellGrid = Sequence[Sequence[SensorCell]]


def _sensor_grid_shape(sensor_cells: SensorCellGrid, owner: str) -> Tuple[int, int]:
    if len(sensor_cells) == 0 or len(sensor_cells[0]) == 0:
        raise ValueError(f"sensor_cells in {owner} cannot be empty")
    height = len(sensor_cells[0])
    if any(len(row) != height for row in sensor_cells):
        raise ValueError(f"sensor_cells in {owner} must be a rectangular grid")
    return len(sensor_cells), height


def rectangle_geometry(sensor_length: int, region_length: int, overlap: int, axis: str = "x") -> Tuple[int, int]:
    """Return ``(field_length, shift)`` of the receptive field along one axis.

    ``region_length`` rectangles of ``field_length`` cells, each shifted by
    ``shift`` from the previous one and sharing ``overlap`` cells with it,
    fit inside ``sensor_length`` cells. The length is floored, so the far
    edge may be left uncovered but is never overrun.
    """
    if overlap < 0:
        raise ValueError(f"overlap along {axis} axis must be non-negative, got {overlap}")
    field_length = (sensor_length + overlap * region_length - overlap) // region_length
    if field_length < 1:
        raise ValueError(
            f"{sensor_length} sensor cells along {axis} axis are too few for {region_length} columns"
        )
    if overlap >= field_length:
        raise ValueError(
            f"overlap {overlap} along {axis} axis must be smaller than the receptive field length {field_length}"
        )
    return field_length, field_length - overlap


class SensorCellsToRegionConnect(ABC):
    """Wires every column's proximal segment to a set of sensor cells."""

    @abstractmethod
    def connect(
        self,
        sensor_cells: SensorCellGrid,
        region: Region,
        overlap_x: int = 0,
        overlap_y: int = 0,
    ) -> None:
        """Add proximal synapses from `sensor_cells` onto `region`'s columns."""
        pass


class SensorCellsToRegionRectangleConnect(SensorCellsToRegionConnect):
    """Tile overlapping rectangular receptive fields across the sensor grid.

    Column ``(cx, cy)`` reads the rectangle
    ``[cx * shift_x, cx * shift_x + field_x) x [cy * shift_y, cy * shift_y + field_y)``.
    With a 66x66 sensor grid, an 8x8 region and an overlap of 2 the fields
    are 10x10 and start at 0, 8, 16, ..., 56 on each axis.
    """

    def __init__(self, permanence: float = INITIAL_PERMANENCE) -> None:
        self.permanence = permanence

    def connect(
        self,
        sensor_cells: SensorCellGrid,
        region: Region,
        overlap_x: int = 0,
        overlap_y: int = 0,
    ) -> None:
        if region is None:
            raise ValueError(
                "region in SensorCellsToRegionRectangleConnect.connect cannot be None"
            )
        if sensor_cells is None:
            raise ValueError(
                "sensor_cells in SensorCellsToRegionRectangleConnect.connect cannot be None"
            )
        sensor_x, sensor_y = _sensor_grid_shape(sensor_cells, "SensorCellsToRegionRectangleConnect.connect")
        region_x, region_y = region.shape

        field_x, shift_x = rectangle_geometry(sensor_x, region_x, overlap_x, "x")
        field_y, shift_y = rectangle_geometry(sensor_y, region_y, overlap_y, "y")
        logger.debug(
            "Connecting %dx%d sensor cells to region '%s' (%dx%d): field %dx%d, shift %dx%d",
            sensor_x, sensor_y, region.name, region_x, region_y, field_x, field_y, shift_x, shift_y,
        )
        self._warn_uncovered("x", sensor_x, region_x, field_x, shift_x)
        self._warn_uncovered("y", sensor_y, region_y, field_y, shift_y)

        for column in region.iter_columns():
            column_x, column_y = column.position
            x_start = column_x * shift_x
            y_start = column_y * shift_y
            for sensor_cell_x in range(x_start, x_start + field_x):
                for sensor_cell_y in range(y_start, y_start + field_y):
                    column.proximal_segment.add_synapse(Synapse(
                        sensor_cells[sensor_cell_x][sensor_cell_y],
                        sensor_cell_x,
                        sensor_cell_y,
                        self.permanence,
                    ))

    def receptive_field(
        self,
        column_x: int,
        column_y: int,
        sensor_shape: Tuple[int, int],
        region_shape: Tuple[int, int],
        overlap_x: int = 0,
        overlap_y: int = 0,
    ) -> Tuple[range, range]:
        """Return the sensor x and y index ranges read by column ``(column_x, column_y)``."""
        if not (0 <= column_x < region_shape[0] and 0 <= column_y < region_shape[1]):
            raise ValueError(
                f"Column ({column_x}, {column_y}) out of bounds for region shape {region_shape}"
            )
        field_x, shift_x = rectangle_geometry(sensor_shape[0], region_shape[0], overlap_x, "x")
        field_y, shift_y = rectangle_geometry(sensor_shape[1], region_shape[1], overlap_y, "y")
        x_start = column_x * shift_x
        y_start = column_y * shift_y
        return range(x_start, x_start + field_x), range(y_start, y_start + field_y)

    @staticmethod
    def _warn_uncovered(axis: str, sensor_length: int, region_length: int, field_length: int, shift: int) -> None:
        covered = (region_length - 1) * shift + field_length
        if covered < sensor_length:
            logger.warning(
                "Receptive fields cover %d of %d sensor cells along %s axis; "
                "the last %d are left unconnected",
                covered, sensor_length, axis, sensor_length - covered,
            )


class SensorCellsToRegionRandomConnect(SensorCellsToRegionConnect):
    """Wire each column to a random sample of sensor cells.

    Overlap arguments are accepted for interface compatibility and ignored.
    Initial permanences are drawn uniformly around the connected threshold.
    """

    def __init__(self, synapses_per_column: int, seed: Optional[int] = None) -> None:
        if synapses_per_column < 1:
            raise ValueError(f"synapses_per_column must be positive, got {synapses_per_column}")
        self.synapses_per_column = synapses_per_column
        self.rng = np.random.default_rng(seed)

    def connect(
        self,
        sensor_cells: SensorCellGrid,
        region: Region,
        overlap_x: int = 0,
        overlap_y: int = 0,
    ) -> None:
        if region is None:
            raise ValueError("region in SensorCellsToRegionRandomConnect.connect cannot be None")
        if sensor_cells is None:
            raise ValueError("sensor_cells in SensorCellsToRegionRandomConnect.connect cannot be None")
        sensor_x, sensor_y = _sensor_grid_shape(sensor_cells, "SensorCellsToRegionRandomConnect.connect")
        if self.synapses_per_column > sensor_x * sensor_y:
            raise ValueError(
                f"Cannot sample {self.synapses_per_column} sensor cells from a {sensor_x}x{sensor_y} grid."
            )

        for column in region.iter_columns():
            sample = self.rng.choice(sensor_x * sensor_y, size=self.synapses_per_column, replace=False)
            for flat_index in np.sort(sample):
                sensor_cell_x, sensor_cell_y = divmod(int(flat_index), sensor_y)
                column.proximal_segment.add_synapse(Synapse(
                    sensor_cells[sensor_cell_x][sensor_cell_y],
                    sensor_cell_x,
                    sensor_cell_y,
                    float(self.rng.uniform(CONNECTED_PERM - 0.1, CONNECTED_PERM + 0.1)),
                ))
